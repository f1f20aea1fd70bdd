"""
Tests for the TriggerService.

These tests verify the trigger lifecycle: transaction ids, validation
ordering, dispatch, broadcast and cancellation.
"""

import threading
import time
import uuid

import pytest

from dispatch.adapters import ResolutionLog, WorkflowTransactionValidator
from dispatch.trigger_service import TriggerService, build_trigger_service, generate_transaction_id
from dispatch.workflow_engine import InMemoryWorkflowEngine
from shared.config import Settings
from shared.exceptions import (
    DispatchError,
    DispatchTimeoutError,
    DuplicateTransactionError,
    InvalidActorError,
    InvalidRecipientError,
    TopicLookupError,
    WorkflowEngineUnavailableError,
)
from shared.models import (
    ALL_SUBSCRIBERS,
    BroadcastCommand,
    BroadcastRequest,
    TenantContext,
    TriggerCommand,
    TriggerRequest,
    TriggerStatus,
)


def topic(topic_id: str) -> dict:
    return {"type": "Topic", "topicId": topic_id}


class SlowEngine:
    """Engine that takes longer than any sensible timeout."""

    def dispatch(self, command):
        time.sleep(0.5)

    def dispatch_broadcast(self, command):
        time.sleep(0.5)

    def cancel(self, transaction_id, tenant):
        time.sleep(0.5)
        return True


class BrokenEngine:
    """Engine failing with an unexpected exception."""

    def dispatch(self, command):
        raise RuntimeError("connection reset")

    def dispatch_broadcast(self, command):
        raise RuntimeError("connection reset")

    def cancel(self, transaction_id, tenant):
        raise RuntimeError("connection reset")


class TestTransactionIds:
    """Tests for transaction id handling."""

    def test_generated_when_missing(self, make_service, tenant: TenantContext):
        """Test that a missing id is filled in by the generator."""
        service, _ = make_service()

        result = service.trigger(TriggerRequest(name="welcome", to="sub-001"), tenant)

        assert result.transaction_id == "tx-0001"

    def test_client_id_is_used(self, make_service, tenant: TenantContext):
        """Test that a client-supplied id is kept."""
        service, _ = make_service()

        result = service.trigger(TriggerRequest(name="welcome", to="sub-001", transaction_id="order-42"), tenant)

        assert result.transaction_id == "order-42"

    def test_default_generator_is_uuid4(self, make_resolver, workflow_engine: InMemoryWorkflowEngine, tenant: TenantContext):
        """Test that without an injected generator ids are random UUIDs."""
        resolver, _ = make_resolver()
        service = TriggerService(resolver, WorkflowTransactionValidator(workflow_engine), workflow_engine)

        first = service.trigger(TriggerRequest(name="welcome", to="sub-001"), tenant)
        second = service.trigger(TriggerRequest(name="welcome", to="sub-001"), tenant)

        assert uuid.UUID(first.transaction_id).version == 4
        assert first.transaction_id != second.transaction_id

    def test_generate_transaction_id(self):
        """Test the default id generator."""
        assert uuid.UUID(generate_transaction_id()).version == 4
        assert generate_transaction_id() != generate_transaction_id()

    def test_duplicate_rejected_before_resolution(self, make_service, tenant: TenantContext):
        """Test that a reused id fails without any topic lookup or dispatch."""
        service, stub = make_service({"eng": ["m1"]})
        request = TriggerRequest(name="welcome", to=[topic("eng")], transaction_id="tx-a")

        service.trigger(request, tenant)
        stub.calls.clear()

        with pytest.raises(DuplicateTransactionError) as exc_info:
            service.trigger(request, tenant)

        assert exc_info.value.transaction_id == "tx-a"
        assert "transactionId property is not unique" in str(exc_info.value)
        assert stub.calls == []
        assert len(service.workflow_engine.get_dispatch_log()) == 1

    def test_concurrent_duplicates(self, make_service, tenant: TenantContext):
        """Test that two in-flight triggers with one id dispatch exactly once."""
        service, _ = make_service({"eng": ["m1"]}, delays={"eng": 0.3})
        request = TriggerRequest(name="welcome", to=[topic("eng")], transaction_id="tx-same")
        outcomes = []
        lock = threading.Lock()

        def run():
            try:
                service.trigger(request, tenant)
                outcome = "processed"
            except DuplicateTransactionError:
                outcome = "duplicate"
            with lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=run) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(outcomes) == ["duplicate", "processed"]
        assert len(service.workflow_engine.get_dispatch_log()) == 1

    def test_id_released_after_failure(self, make_service, tenant: TenantContext):
        """Test that a trigger rejected after the id check leaves the id usable."""
        service, _ = make_service()

        with pytest.raises(InvalidActorError):
            service.trigger(
                TriggerRequest(name="welcome", to="sub-001", actor=topic("eng"), transaction_id="tx-a"), tenant
            )

        result = service.trigger(TriggerRequest(name="welcome", to="sub-001", transaction_id="tx-a"), tenant)

        assert result.transaction_id == "tx-a"

    def test_id_released_when_engine_unavailable(
        self, make_service, workflow_engine: InMemoryWorkflowEngine, tenant: TenantContext
    ):
        """Test that a trigger the engine refused can be retried with the same id."""
        service, _ = make_service()
        request = TriggerRequest(name="welcome", to="sub-001", transaction_id="tx-a")
        workflow_engine.available = False

        with pytest.raises(WorkflowEngineUnavailableError):
            service.trigger(request, tenant)

        workflow_engine.available = True
        assert service.trigger(request, tenant).acknowledged is True

    def test_same_id_in_other_tenant(self, make_service, tenant: TenantContext, other_tenant: TenantContext):
        """Test that transaction ids are unique per tenant only."""
        service, _ = make_service()

        service.trigger(TriggerRequest(name="welcome", to="sub-001", transaction_id="tx-a"), tenant)
        result = service.trigger(TriggerRequest(name="welcome", to="sub-101", transaction_id="tx-a"), other_tenant)

        assert result.acknowledged is True


class TestTrigger:
    """Tests for the regular trigger path."""

    def test_command_contents(self, make_service, tenant: TenantContext):
        """Test the command handed to the engine."""
        service, _ = make_service({"eng": ["m1", "m2"]})

        service.trigger(
            TriggerRequest(
                name="welcome",
                payload={"orderId": "o-1"},
                to=[topic("eng"), {"subscriberId": "d1", "email": "d1@example.com"}],
                actor="sub-005",
            ),
            tenant,
        )

        command = service.workflow_engine.get_dispatch_log()[0]
        assert isinstance(command, TriggerCommand)
        assert command.template_identifier == "welcome"
        assert command.payload == {"orderId": "o-1"}
        assert command.overrides == {}
        assert [s.subscriber_id for s in command.to] == ["d1", "m1", "m2"]
        assert command.to[0].email == "d1@example.com"
        assert command.actor.subscriber_id == "sub-005"
        assert command.transaction.transaction_id == "tx-0001"
        assert command.transaction.tenant == tenant

    def test_failing_topic_still_dispatches(self, make_service, tenant: TenantContext, resolution_log: ResolutionLog):
        """Test that one broken topic does not fail the trigger."""
        service, _ = make_service({"a": ["a1"], "b": TopicLookupError("b", "store down")})

        result = service.trigger(TriggerRequest(name="welcome", to=[topic("a"), topic("b")]), tenant)

        assert result.acknowledged is True
        assert result.status == TriggerStatus.PROCESSED.value
        assert [j.subscriber_id for j in service.workflow_engine.get_jobs(result.transaction_id)] == ["a1"]
        assert resolution_log.get_records(result.transaction_id)[0].topic_id == "b"

    def test_all_topics_fail(self, make_service, tenant: TenantContext):
        """Test that a trigger left with no recipients is still acknowledged."""
        service, _ = make_service()

        result = service.trigger(TriggerRequest(name="welcome", to=[topic("nope")]), tenant)

        assert result.acknowledged is True
        assert result.status == TriggerStatus.SUBSCRIBER_MISSING.value

    def test_unknown_recipient_kind(self, make_service, tenant: TenantContext):
        """Test that an entry of an unknown kind is handed on without a subscriberId."""
        service, _ = make_service({"eng": ["m1"]})

        result = service.trigger(
            TriggerRequest(name="welcome", to=["d1", {"type": "Tenant", "tenantId": "t-9"}, topic("eng")]),
            tenant,
        )

        command = service.workflow_engine.get_dispatch_log()[0]
        assert [s.subscriber_id for s in command.to] == ["d1", None, "m1"]
        assert command.to[1].model_dump(by_alias=True, exclude_none=True) == {"type": "Tenant", "tenantId": "t-9"}
        assert len(service.workflow_engine.get_jobs(result.transaction_id)) == 3

    def test_topic_actor_rejected(self, make_service, tenant: TenantContext):
        """Test that a topic actor fails before lookups and dispatch."""
        service, stub = make_service({"eng": ["m1"]})

        with pytest.raises(InvalidActorError):
            service.trigger(TriggerRequest(name="welcome", to=[topic("eng")], actor=topic("eng")), tenant)

        assert stub.calls == []
        assert service.workflow_engine.get_dispatch_log() == []
        assert not service.workflow_engine.has_transaction("tx-0001", "org-001", "env-001")

    def test_invalid_recipient(self, make_service, tenant: TenantContext):
        """Test that a malformed recipient fails the trigger."""
        service, _ = make_service()

        with pytest.raises(InvalidRecipientError):
            service.trigger(TriggerRequest(name="welcome", to=[{"email": "x@example.com"}]), tenant)

        assert service.workflow_engine.get_dispatch_log() == []


class TestDispatchErrors:
    """Tests for workflow engine failures."""

    def test_engine_unavailable(self, make_service, workflow_engine: InMemoryWorkflowEngine, tenant: TenantContext):
        """Test that an unavailable engine surfaces as a DispatchError."""
        service, _ = make_service()
        workflow_engine.available = False

        with pytest.raises(DispatchError) as exc_info:
            service.trigger(TriggerRequest(name="welcome", to="sub-001"), tenant)

        assert isinstance(exc_info.value, WorkflowEngineUnavailableError)

    def test_unexpected_engine_error_is_wrapped(self, make_service, tenant: TenantContext):
        """Test that arbitrary engine exceptions become DispatchError."""
        service, _ = make_service(engine=BrokenEngine())

        with pytest.raises(DispatchError) as exc_info:
            service.trigger(TriggerRequest(name="welcome", to="sub-001"), tenant)

        assert isinstance(exc_info.value.__cause__, RuntimeError)

    def test_engine_timeout(self, make_service, tenant: TenantContext):
        """Test that a slow engine fails with DispatchTimeoutError."""
        service, _ = make_service(engine=SlowEngine(), dispatch_timeout=0.1)

        with pytest.raises(DispatchTimeoutError):
            service.trigger(TriggerRequest(name="welcome", to="sub-001"), tenant)

    def test_engine_timeout_keeps_id_claimed(
        self, make_service, workflow_engine: InMemoryWorkflowEngine, tenant: TenantContext
    ):
        """Test that an id is not handed out again after a dispatch timeout."""
        service, _ = make_service(engine=SlowEngine(), dispatch_timeout=0.1)

        with pytest.raises(DispatchTimeoutError):
            service.trigger(TriggerRequest(name="welcome", to="sub-001", transaction_id="tx-slow"), tenant)

        assert workflow_engine.has_transaction("tx-slow", "org-001", "env-001")

    def test_cancel_engine_error(self, make_service, tenant: TenantContext):
        """Test that cancel failures surface as DispatchError too."""
        service, _ = make_service(engine=BrokenEngine())

        with pytest.raises(DispatchError):
            service.cancel("tx-1", tenant)


class TestBroadcast:
    """Tests for the broadcast path."""

    def test_broadcast_skips_resolution(self, make_service, tenant: TenantContext, monkeypatch):
        """Test that broadcasts never touch recipient resolution."""
        service, stub = make_service({"eng": ["m1"]})

        def fail(*args, **kwargs):
            raise AssertionError("recipient resolution must not run for broadcasts")

        monkeypatch.setattr(service.recipient_resolver, "resolve", fail)

        result = service.trigger_broadcast(BroadcastRequest(name="announcement"), tenant)

        assert result.acknowledged is True
        assert stub.calls == []

        command = service.workflow_engine.get_dispatch_log()[0]
        assert isinstance(command, BroadcastCommand)
        assert command.audience == ALL_SUBSCRIBERS
        assert len(service.workflow_engine.get_jobs(result.transaction_id)) == 5

    def test_broadcast_actor(self, make_service, tenant: TenantContext):
        """Test that broadcasts map the actor like triggers do."""
        service, _ = make_service()

        service.trigger_broadcast(BroadcastRequest(name="announcement", actor={"subscriberId": "sub-002"}), tenant)

        assert service.workflow_engine.get_dispatch_log()[0].actor.subscriber_id == "sub-002"

    def test_broadcast_topic_actor_rejected(self, make_service, tenant: TenantContext):
        """Test that a topic actor is rejected on broadcasts too."""
        service, _ = make_service()

        with pytest.raises(InvalidActorError):
            service.trigger_broadcast(BroadcastRequest(name="announcement", actor=topic("eng")), tenant)

    def test_broadcast_duplicate_transaction(self, make_service, tenant: TenantContext):
        """Test that broadcasts share the idempotency check."""
        service, _ = make_service()
        service.trigger(TriggerRequest(name="welcome", to="sub-001", transaction_id="tx-a"), tenant)

        with pytest.raises(DuplicateTransactionError):
            service.trigger_broadcast(BroadcastRequest(name="announcement", transaction_id="tx-a"), tenant)


class TestCancel:
    """Tests for cancellation through the service."""

    def test_cancel_pending(self, make_service, tenant: TenantContext):
        """Test cancelling a freshly triggered transaction."""
        service, _ = make_service()
        result = service.trigger(TriggerRequest(name="welcome", to=["sub-001", "sub-002"]), tenant)

        assert service.cancel(result.transaction_id, tenant) is True
        assert service.cancel(result.transaction_id, tenant) is False

    def test_cancel_unknown(self, make_service, tenant: TenantContext):
        """Test that an unknown transaction yields False."""
        service, _ = make_service()

        assert service.cancel("nope", tenant) is False

    def test_cancel_after_completion(self, make_service, workflow_engine: InMemoryWorkflowEngine, tenant: TenantContext):
        """Test that completed transactions have nothing left to cancel."""
        service, _ = make_service()
        result = service.trigger(TriggerRequest(name="welcome", to="sub-001"), tenant)
        workflow_engine.complete_transaction(result.transaction_id, tenant)

        assert service.cancel(result.transaction_id, tenant) is False


class TestBuildTriggerService:
    """Tests for the wired service over the fixture store."""

    def test_end_to_end(self, trigger_service: TriggerService, tenant: TenantContext, resolution_log: ResolutionLog):
        """Test a mixed trigger against the real topic store."""
        result = trigger_service.trigger(
            TriggerRequest(name="welcome", to=["sub-001", topic("engineering"), topic("nope")]),
            tenant,
        )

        jobs = trigger_service.workflow_engine.get_jobs(result.transaction_id)
        assert [j.subscriber_id for j in jobs] == ["sub-001", "sub-001", "sub-002"]
        assert [r.topic_id for r in resolution_log.get_records(result.transaction_id)] == ["nope"]

    def test_topics_resolve_in_caller_tenant(self, trigger_service: TriggerService, other_tenant: TenantContext):
        """Test that the same topic key resolves per tenant."""
        result = trigger_service.trigger(TriggerRequest(name="welcome", to=[topic("engineering")]), other_tenant)

        jobs = trigger_service.workflow_engine.get_jobs(result.transaction_id)
        assert [j.subscriber_id for j in jobs] == ["sub-101"]

    def test_settings_are_applied(self, settings: Settings, data_store):
        """Test that limits and timeouts come from settings."""
        service = build_trigger_service(settings=settings, data_store=data_store)

        assert service.recipient_resolver.fanout_limit == 4
        assert service.recipient_resolver.lookup_timeout == 2.0
        assert service.dispatch_timeout is None
