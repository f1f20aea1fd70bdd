"""
In-memory workflow engine.

This module stands in for the engine that executes triggered workflows
(delays, digests, channel steps). In a real system the trigger core would call
a queue-backed service here.

Design decisions:
- One job per recipient per trigger, created PENDING; jobs stay pending until
  the transaction is completed, which models delay/digest windows
- Transaction ids are tracked per tenant. The idempotency validator reserves
  an id (check and insert under one lock) before any resolution work, so two
  concurrent triggers can never both claim it; the reservation is released
  when the trigger fails before dispatch
- Broadcasts are fanned out here, against the tenant's full subscriber list;
  the trigger core never sees that list
- Can be switched unavailable to simulate an outage
- Keeps the most recent dispatched commands for inspection (bounded); jobs
  and transaction ids are kept for the life of the process, since a pending
  job must stay cancellable until it completes
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union
from uuid import uuid4

from shared.data_store import DataStore, get_data_store
from shared.exceptions import WorkflowEngineUnavailableError
from shared.models import (
    BroadcastCommand,
    TenantContext,
    TriggerCommand,
    TriggerResult,
    TriggerStatus,
)

logger = logging.getLogger("workflow_engine")

DEFAULT_HISTORY_LIMIT = 1000


class JobStatus(str, Enum):
    """Job lifecycle states."""
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELED = "canceled"


@dataclass
class WorkflowJob:
    """
    One unit of pending work: a template run for one subscriber.

    Attributes:
        transaction_id: Trigger this job belongs to
        environment_id / organization_id: Owning tenant
        template_identifier: Workflow to run
        subscriber_id: Recipient of this run (None for recipient kinds passed through)
        actor_id: Subscriber who caused the trigger, if any
        status: Current lifecycle state
    """
    transaction_id: str
    environment_id: str
    organization_id: str
    template_identifier: str
    subscriber_id: Optional[str]
    actor_id: Optional[str] = None
    status: JobStatus = JobStatus.PENDING
    job_id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __str__(self) -> str:
        return f"Job({self.template_identifier} -> {self.subscriber_id}, tx={self.transaction_id[:8]}, {self.status.value})"


Dispatched = Union[TriggerCommand, BroadcastCommand]


class InMemoryWorkflowEngine:
    """
    Workflow engine keeping its jobs in memory.

    Example usage:
        engine = InMemoryWorkflowEngine(data_store)
        result = engine.dispatch(command)        # jobs created, PENDING
        engine.cancel(result.transaction_id, tenant)  # -> True
        engine.cancel(result.transaction_id, tenant)  # -> False, nothing left
    """

    def __init__(self, data_store: Optional[DataStore] = None, history_limit: int = DEFAULT_HISTORY_LIMIT):
        """
        Initialize the engine.

        Args:
            data_store: Subscriber directory used for broadcast fan-out
                        (defaults to singleton)
            history_limit: Number of dispatched commands kept for inspection
        """
        self.data_store = data_store or get_data_store()
        self.available = True

        self._lock = threading.Lock()
        self._jobs: list[WorkflowJob] = []
        # (environment_id, organization_id) -> transaction ids dispatched
        self._transactions: dict[tuple[str, str], set[str]] = {}
        # (environment_id, organization_id, transaction_id) claimed but not yet dispatched
        self._reserved: set[tuple[str, str, str]] = set()
        self._dispatch_log: deque[Dispatched] = deque(maxlen=history_limit)

    # =========================================================================
    # Dispatch
    # =========================================================================

    def dispatch(self, command: TriggerCommand) -> TriggerResult:
        """
        Accept a resolved trigger and queue one job per recipient.

        Raises:
            WorkflowEngineUnavailableError: if the engine is switched off
        """
        self._ensure_available()
        tx = command.transaction

        subscriber_ids = [s.subscriber_id for s in command.to]
        actor_id = command.actor.subscriber_id if command.actor else None
        self._enqueue(command, subscriber_ids, actor_id)

        logger.info(
            f"Dispatched '{command.template_identifier}' tx={tx.transaction_id} "
            f"to {len(subscriber_ids)} subscriber(s)"
        )

        if not subscriber_ids:
            return TriggerResult(
                acknowledged=True,
                status=TriggerStatus.SUBSCRIBER_MISSING.value,
                transaction_id=tx.transaction_id,
            )
        return TriggerResult(
            acknowledged=True,
            status=TriggerStatus.PROCESSED.value,
            transaction_id=tx.transaction_id,
        )

    def dispatch_broadcast(self, command: BroadcastCommand) -> TriggerResult:
        """
        Accept a broadcast and fan it out to every subscriber of the tenant.

        Raises:
            WorkflowEngineUnavailableError: if the engine is switched off
        """
        self._ensure_available()
        tx = command.transaction

        subscribers = self.data_store.get_subscribers(tx.environment_id, tx.organization_id)
        subscriber_ids = [s.subscriber_id for s in subscribers]
        actor_id = command.actor.subscriber_id if command.actor else None
        self._enqueue(command, subscriber_ids, actor_id)

        logger.info(
            f"Broadcast '{command.template_identifier}' tx={tx.transaction_id} "
            f"fanned out to {len(subscriber_ids)} subscriber(s)"
        )
        return TriggerResult(
            acknowledged=True,
            status=TriggerStatus.PROCESSED.value,
            transaction_id=tx.transaction_id,
        )

    def _ensure_available(self) -> None:
        if not self.available:
            logger.error("Workflow engine unavailable, rejecting dispatch")
            raise WorkflowEngineUnavailableError("Workflow engine is unavailable")

    def _enqueue(self, command: Dispatched, subscriber_ids: list[Optional[str]], actor_id: Optional[str]) -> None:
        tx = command.transaction
        jobs = [
            WorkflowJob(
                transaction_id=tx.transaction_id,
                environment_id=tx.environment_id,
                organization_id=tx.organization_id,
                template_identifier=command.template_identifier,
                subscriber_id=subscriber_id,
                actor_id=actor_id,
            )
            for subscriber_id in subscriber_ids
        ]
        with self._lock:
            self._jobs.extend(jobs)
            self._transactions.setdefault(
                (tx.environment_id, tx.organization_id), set()
            ).add(tx.transaction_id)
            self._reserved.discard((tx.environment_id, tx.organization_id, tx.transaction_id))
            self._dispatch_log.append(command)

    # =========================================================================
    # Transaction lifecycle
    # =========================================================================

    def has_transaction(self, transaction_id: str, organization_id: str, environment_id: str) -> bool:
        """True if a trigger with this id was already accepted or claimed in the tenant."""
        with self._lock:
            return self._is_taken(transaction_id, organization_id, environment_id)

    def reserve_transaction(self, transaction_id: str, organization_id: str, environment_id: str) -> bool:
        """
        Claim a transaction id for a new trigger.

        Returns False if the id is already dispatched or claimed in the tenant.
        """
        with self._lock:
            if self._is_taken(transaction_id, organization_id, environment_id):
                return False
            self._reserved.add((environment_id, organization_id, transaction_id))
            return True

    def release_transaction(self, transaction_id: str, organization_id: str, environment_id: str) -> None:
        """Drop a claim that never led to a dispatch. Dispatched ids stay taken."""
        with self._lock:
            self._reserved.discard((environment_id, organization_id, transaction_id))

    def _is_taken(self, transaction_id: str, organization_id: str, environment_id: str) -> bool:
        return (
            transaction_id in self._transactions.get((environment_id, organization_id), set())
            or (environment_id, organization_id, transaction_id) in self._reserved
        )

    def cancel(self, transaction_id: str, tenant: TenantContext) -> bool:
        """
        Cancel every pending job of a transaction.

        Returns:
            True if at least one pending job was cancelled; False when the
            transaction is unknown or has nothing pending any more
        """
        with self._lock:
            pending = self._pending_jobs(transaction_id, tenant)
            for job in pending:
                job.status = JobStatus.CANCELED

        if pending:
            logger.info(f"Cancelled {len(pending)} pending job(s) for tx={transaction_id}")
        else:
            logger.info(f"Nothing to cancel for tx={transaction_id}")
        return bool(pending)

    def complete_transaction(self, transaction_id: str, tenant: TenantContext) -> int:
        """
        Mark every pending job of a transaction as completed.

        Simulates the delay/digest window closing. Returns the number of jobs completed.
        """
        with self._lock:
            pending = self._pending_jobs(transaction_id, tenant)
            for job in pending:
                job.status = JobStatus.COMPLETED
        logger.info(f"Completed {len(pending)} job(s) for tx={transaction_id}")
        return len(pending)

    def _pending_jobs(self, transaction_id: str, tenant: TenantContext) -> list[WorkflowJob]:
        return [
            job for job in self._jobs
            if job.transaction_id == transaction_id
            and job.environment_id == tenant.environment_id
            and job.organization_id == tenant.organization_id
            and job.status == JobStatus.PENDING
        ]

    # =========================================================================
    # Inspection
    # =========================================================================

    def get_jobs(self, transaction_id: Optional[str] = None) -> list[WorkflowJob]:
        """Get all jobs, optionally only those of one transaction."""
        with self._lock:
            if transaction_id is None:
                return list(self._jobs)
            return [job for job in self._jobs if job.transaction_id == transaction_id]

    def get_dispatch_log(self) -> list[Dispatched]:
        """Get the most recent accepted commands, in arrival order."""
        with self._lock:
            return list(self._dispatch_log)
