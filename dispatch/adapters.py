"""
In-memory collaborator adapters.

- DataStoreTopicResolver: topic membership lookups against the DataStore
- ResolutionLog: audit sink for topics that failed to resolve
- WorkflowTransactionValidator: claims transaction ids the engine does not know yet
"""

import logging
from collections import deque
from typing import Optional

from dispatch.workflow_engine import InMemoryWorkflowEngine
from shared.data_store import DataStore
from shared.exceptions import DuplicateTransactionError, TopicNotFoundError
from shared.models import ResolutionFailure

logger = logging.getLogger("resolution_log")

TOPIC_SUBSCRIBERS_ERROR = "topic_subscribers_error"

DEFAULT_MAX_RECORDS = 1000


class DataStoreTopicResolver:
    """Resolves topic members from the tenant's topics in a DataStore."""

    def __init__(self, data_store: DataStore):
        self.data_store = data_store

    def get_members(
        self,
        topic_id: str,
        environment_id: str,
        organization_id: str,
        user_id: str,
    ) -> list[str]:
        """
        Get the member ids of a topic.

        Raises:
            TopicNotFoundError: if the id is empty or the tenant has no such topic
        """
        if not topic_id:
            raise TopicNotFoundError(topic_id)

        members = self.data_store.get_topic_subscriber_ids(environment_id, organization_id, topic_id)
        if members is None:
            raise TopicNotFoundError(topic_id)
        return members


class ResolutionLog:
    """
    Audit sink for resolution failures.

    Writes an error line per failure and keeps the most recent records for
    inspection, the way the execution log of a trigger would show them.
    Older records are dropped once max_records is reached; the log lines remain.
    """

    def __init__(self, max_records: int = DEFAULT_MAX_RECORDS):
        self.records: deque[ResolutionFailure] = deque(maxlen=max_records)

    def record(self, failure: ResolutionFailure) -> None:
        self.records.append(failure)
        logger.error(
            f"[{TOPIC_SUBSCRIBERS_ERROR}] Failed retrieving topic subscribers | "
            f"topic={failure.topic_id!r} tx={failure.transaction_id} "
            f"env={failure.environment_id} org={failure.organization_id} | {failure.reason}"
        )

    def get_records(self, transaction_id: Optional[str] = None) -> list[ResolutionFailure]:
        """Get recorded failures, optionally only those of one transaction."""
        if transaction_id is None:
            return list(self.records)
        return [r for r in self.records if r.transaction_id == transaction_id]


class WorkflowTransactionValidator:
    """Claims transaction ids in the workflow engine for the lifetime of a trigger."""

    def __init__(self, workflow_engine: InMemoryWorkflowEngine):
        self.workflow_engine = workflow_engine

    def validate(self, transaction_id: str, organization_id: str, environment_id: str) -> None:
        """
        Check and claim the id in one step.

        Raises:
            DuplicateTransactionError: if the id is dispatched or claimed in this tenant
        """
        if not self.workflow_engine.reserve_transaction(transaction_id, organization_id, environment_id):
            raise DuplicateTransactionError(transaction_id)

    def release(self, transaction_id: str, organization_id: str, environment_id: str) -> None:
        """Give back a claimed id whose trigger failed before dispatch."""
        self.workflow_engine.release_transaction(transaction_id, organization_id, environment_id)
