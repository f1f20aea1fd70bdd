"""
Shared pytest fixtures for the trigger core tests.

These fixtures provide consistent tenants, fixture-backed stores and fresh
collaborators for every test.
"""

import itertools
import threading
import time
from pathlib import Path
from typing import Callable, Optional, Union

import pytest

from dispatch.adapters import ResolutionLog, WorkflowTransactionValidator
from dispatch.trigger_service import TriggerService, build_trigger_service
from dispatch.workflow_engine import InMemoryWorkflowEngine
from recipients.resolver import RecipientResolver
from shared.config import Settings
from shared.data_store import DataStore
from shared.exceptions import TopicNotFoundError
from shared.models import TenantContext


class StubTopicResolver:
    """
    Topic resolver with scripted answers.

    Each topic maps to a member list or to an exception to raise. Unknown
    topics raise TopicNotFoundError. Optional per-topic delays make lookups
    finish out of order. Every call is recorded.
    """

    def __init__(
        self,
        topics: dict[str, Union[list[str], Exception]],
        delays: Optional[dict[str, float]] = None,
    ):
        self.topics = topics
        self.delays = delays or {}
        self.calls: list[tuple[str, str, str, str]] = []
        self._lock = threading.Lock()

    def get_members(self, topic_id: str, environment_id: str, organization_id: str, user_id: str) -> list[str]:
        with self._lock:
            self.calls.append((topic_id, environment_id, organization_id, user_id))

        delay = self.delays.get(topic_id)
        if delay:
            time.sleep(delay)

        outcome = self.topics.get(topic_id)
        if outcome is None:
            raise TopicNotFoundError(topic_id)
        if isinstance(outcome, Exception):
            raise outcome
        return list(outcome)

    @property
    def called_topics(self) -> list[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def data_dir() -> Path:
    """Path to the fixture data directory."""
    return Path(__file__).parent.parent / "data"


@pytest.fixture
def data_store(data_dir: Path) -> DataStore:
    """
    Fresh DataStore instance for each test.

    Uses the real JSON fixtures but creates a new instance
    so membership changes don't leak between tests.
    """
    return DataStore(data_dir=data_dir)


@pytest.fixture
def settings(data_dir: Path) -> Settings:
    """Settings pointing at the fixtures, without an engine-call timeout."""
    return Settings(
        data_dir=data_dir,
        topic_fanout_limit=4,
        topic_lookup_timeout_seconds=2.0,
        dispatch_timeout_seconds=None,
    )


# =============================================================================
# Tenant Fixtures
# =============================================================================

@pytest.fixture
def tenant() -> TenantContext:
    """Tenant owning sub-001..sub-005 and topics engineering, design, all-hands, quiet-room."""
    return TenantContext(environment_id="env-001", organization_id="org-001", user_id="user-001")


@pytest.fixture
def other_tenant() -> TenantContext:
    """Second tenant with its own 'engineering' topic (sub-101 only)."""
    return TenantContext(environment_id="env-002", organization_id="org-002", user_id="user-002")


# =============================================================================
# Collaborator Fixtures
# =============================================================================

@pytest.fixture
def resolution_log() -> ResolutionLog:
    """Fresh resolution log for each test."""
    return ResolutionLog()


@pytest.fixture
def workflow_engine(data_store: DataStore) -> InMemoryWorkflowEngine:
    """Fresh workflow engine over the fixture store."""
    return InMemoryWorkflowEngine(data_store=data_store)


@pytest.fixture
def id_generator() -> Callable[[], str]:
    """Deterministic transaction ids: tx-0001, tx-0002, ..."""
    counter = itertools.count(1)
    return lambda: f"tx-{next(counter):04d}"


@pytest.fixture
def make_resolver(resolution_log: ResolutionLog):
    """
    Factory for a RecipientResolver over a StubTopicResolver.

    Returns (resolver, stub) so tests can inspect the recorded lookups.
    """
    def _make(
        topics: Optional[dict[str, Union[list[str], Exception]]] = None,
        delays: Optional[dict[str, float]] = None,
        fanout_limit: int = 4,
        lookup_timeout: Optional[float] = 2.0,
    ) -> tuple[RecipientResolver, StubTopicResolver]:
        stub = StubTopicResolver(topics or {}, delays)
        resolver = RecipientResolver(
            topic_resolver=stub,
            log_sink=resolution_log,
            fanout_limit=fanout_limit,
            lookup_timeout=lookup_timeout,
        )
        return resolver, stub

    return _make


@pytest.fixture
def make_service(make_resolver, workflow_engine: InMemoryWorkflowEngine, id_generator):
    """
    Factory for a TriggerService over a StubTopicResolver and the in-memory engine.

    Returns (service, stub).
    """
    def _make(
        topics: Optional[dict[str, Union[list[str], Exception]]] = None,
        engine=None,
        dispatch_timeout: Optional[float] = None,
        delays: Optional[dict[str, float]] = None,
    ) -> tuple[TriggerService, StubTopicResolver]:
        resolver, stub = make_resolver(topics, delays)
        engine = engine or workflow_engine
        service = TriggerService(
            recipient_resolver=resolver,
            transaction_validator=WorkflowTransactionValidator(workflow_engine),
            workflow_engine=engine,
            id_generator=id_generator,
            dispatch_timeout=dispatch_timeout,
        )
        return service, stub

    return _make


@pytest.fixture
def trigger_service(
    settings: Settings,
    data_store: DataStore,
    workflow_engine: InMemoryWorkflowEngine,
    resolution_log: ResolutionLog,
    id_generator,
) -> TriggerService:
    """TriggerService wired to the fixture store, as the API and CLI build it."""
    return build_trigger_service(
        settings=settings,
        data_store=data_store,
        workflow_engine=workflow_engine,
        log_sink=resolution_log,
        id_generator=id_generator,
    )
