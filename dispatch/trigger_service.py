"""
Trigger dispatch.

The TriggerService owns the lifecycle of one trigger request:

    1. establish the transaction id (client supplied, or freshly generated)
    2. claim the id with the idempotency validator (released again if a later
       step fails)
    3. map the actor (a topic actor is rejected)
    4. resolve the "to" list into concrete subscribers
    5. hand the assembled TriggerCommand to the workflow engine

Broadcasts run steps 1-3 and then let the workflow engine fan out to the whole
tenant; no recipient resolution happens. Cancellation is a straight delegation
to the engine.

Design decisions:
- Steps 1-3 fail fast, before any topic lookup or engine call
- Topic failures are absorbed by the RecipientResolver; a trigger with failed
  topics still dispatches with the recipients that did resolve
- Engine errors are surfaced as DispatchError and never retried here
- Id generation is injected so tests can pin transaction ids
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional
from uuid import uuid4

from dispatch.adapters import DataStoreTopicResolver, ResolutionLog, WorkflowTransactionValidator
from dispatch.workflow_engine import InMemoryWorkflowEngine
from recipients.classifier import resolve_actor
from recipients.resolver import RecipientResolver
from shared.collaborators import ResolutionLogSink, TransactionValidator, WorkflowEngine
from shared.config import Settings, get_settings
from shared.data_store import DataStore
from shared.exceptions import DispatchError, DispatchTimeoutError
from shared.models import (
    BroadcastCommand,
    BroadcastRequest,
    TenantContext,
    TriggerCommand,
    TriggerRequest,
    TriggerResult,
    TriggerTransaction,
)

logger = logging.getLogger("trigger_service")

IdGenerator = Callable[[], str]


def generate_transaction_id() -> str:
    """A fresh random (version 4) UUID string."""
    return str(uuid4())


class TriggerService:
    """
    Entry point for triggering, broadcasting and cancelling workflows.

    Example:
        service = build_trigger_service()
        result = service.trigger(
            TriggerRequest(name="welcome", to=["sub-001", {"type": "Topic", "topicId": "design"}]),
            tenant,
        )
        service.cancel(result.transaction_id, tenant)
    """

    def __init__(
        self,
        recipient_resolver: RecipientResolver,
        transaction_validator: TransactionValidator,
        workflow_engine: WorkflowEngine,
        id_generator: Optional[IdGenerator] = None,
        dispatch_timeout: Optional[float] = None,
    ):
        """
        Args:
            recipient_resolver: Resolves the "to" list
            transaction_validator: Rejects reused transaction ids
            workflow_engine: Receives commands and handles cancellation
            id_generator: Produces transaction ids when the caller gives none
            dispatch_timeout: Seconds to wait for each engine call; None waits forever
        """
        self.recipient_resolver = recipient_resolver
        self.transaction_validator = transaction_validator
        self.workflow_engine = workflow_engine
        self.id_generator = id_generator or generate_transaction_id
        self.dispatch_timeout = dispatch_timeout

    # =========================================================================
    # Operations
    # =========================================================================

    def trigger(self, request: TriggerRequest, tenant: TenantContext) -> TriggerResult:
        """
        Trigger a workflow for the request's recipients.

        Raises:
            DuplicateTransactionError: transaction id already used in the tenant
            InvalidActorError: actor is a topic or malformed
            InvalidRecipientError: a "to" entry is malformed
            DispatchError: the workflow engine failed or timed out
        """
        with self._open_transaction(request.transaction_id, tenant) as transaction:
            actor = resolve_actor(request.actor)

            to = self.recipient_resolver.resolve(transaction.transaction_id, tenant, request.to)

            command = TriggerCommand(
                transaction=transaction,
                template_identifier=request.name,
                payload=request.payload,
                overrides=request.overrides or {},
                to=to,
                actor=actor,
            )
            result = self._call_engine(self.workflow_engine.dispatch, command)
        logger.info(
            f"Trigger '{request.name}' tx={transaction.transaction_id}: "
            f"{len(to)} recipient(s), status={result.status}"
        )
        return result

    def trigger_broadcast(self, request: BroadcastRequest, tenant: TenantContext) -> TriggerResult:
        """
        Trigger a workflow for every subscriber of the tenant.

        Recipients are not resolved here; the workflow engine fans out.
        """
        with self._open_transaction(request.transaction_id, tenant) as transaction:
            actor = resolve_actor(request.actor)

            command = BroadcastCommand(
                transaction=transaction,
                template_identifier=request.name,
                payload=request.payload,
                overrides=request.overrides or {},
                actor=actor,
            )
            result = self._call_engine(self.workflow_engine.dispatch_broadcast, command)
        logger.info(f"Broadcast '{request.name}' tx={transaction.transaction_id}: status={result.status}")
        return result

    def cancel(self, transaction_id: str, tenant: TenantContext) -> bool:
        """
        Cancel pending work (delays, digests, queued steps) of a transaction.

        Returns False, not an error, for unknown or already completed transactions.
        """
        cancelled = self._call_engine(self.workflow_engine.cancel, transaction_id, tenant)
        logger.info(f"Cancel tx={transaction_id}: {'cancelled' if cancelled else 'nothing pending'}")
        return cancelled

    # =========================================================================
    # Helpers
    # =========================================================================

    @contextmanager
    def _open_transaction(self, transaction_id: Optional[str], tenant: TenantContext) -> Iterator[TriggerTransaction]:
        """
        Establish and claim the transaction id for a new trigger.

        The claim is given back if the trigger fails before reaching the engine.
        After a dispatch timeout the engine may still have the trigger, so the
        id stays claimed.
        """
        if not transaction_id:
            transaction_id = self.id_generator()
            logger.debug(f"Generated transaction id {transaction_id}")

        self.transaction_validator.validate(transaction_id, tenant.organization_id, tenant.environment_id)
        try:
            yield TriggerTransaction.for_tenant(transaction_id, tenant)
        except DispatchTimeoutError:
            raise
        except Exception:
            logger.debug(f"Releasing transaction id {transaction_id} after failure")
            self.transaction_validator.release(transaction_id, tenant.organization_id, tenant.environment_id)
            raise

    def _call_engine(self, call: Callable[..., Any], *args: Any) -> Any:
        """Call the workflow engine, bounded by the dispatch timeout."""
        try:
            if self.dispatch_timeout is None:
                return call(*args)

            executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="engine-call")
            try:
                return executor.submit(call, *args).result(timeout=self.dispatch_timeout)
            finally:
                executor.shutdown(wait=False)
        except FutureTimeoutError as e:
            logger.error(f"Workflow engine did not answer within {self.dispatch_timeout}s")
            raise DispatchTimeoutError(
                f"Workflow engine did not answer within {self.dispatch_timeout}s"
            ) from e
        except DispatchError:
            raise
        except Exception as e:
            logger.error(f"Workflow engine call failed: {e}")
            raise DispatchError(f"Workflow engine call failed: {e}") from e


def build_trigger_service(
    settings: Optional[Settings] = None,
    data_store: Optional[DataStore] = None,
    workflow_engine: Optional[InMemoryWorkflowEngine] = None,
    log_sink: Optional[ResolutionLogSink] = None,
    id_generator: Optional[IdGenerator] = None,
) -> TriggerService:
    """Wire a TriggerService against the in-memory collaborators."""
    settings = settings or get_settings()
    data_store = data_store or DataStore(data_dir=settings.data_dir)
    workflow_engine = workflow_engine or InMemoryWorkflowEngine(data_store=data_store)

    resolver = RecipientResolver(
        topic_resolver=DataStoreTopicResolver(data_store),
        log_sink=log_sink if log_sink is not None else ResolutionLog(),
        fanout_limit=settings.topic_fanout_limit,
        lookup_timeout=settings.topic_lookup_timeout_seconds,
    )
    return TriggerService(
        recipient_resolver=resolver,
        transaction_validator=WorkflowTransactionValidator(workflow_engine),
        workflow_engine=workflow_engine,
        id_generator=id_generator,
        dispatch_timeout=settings.dispatch_timeout_seconds,
    )
