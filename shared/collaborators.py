"""
Contracts of the collaborators the trigger core talks to.

The core only depends on these protocols. In-memory implementations live in
dispatch/adapters.py and dispatch/workflow_engine.py; a deployment would plug
in clients for the real topic store, audit log and workflow engine.
"""

from typing import Protocol, Sequence

from shared.models import (
    BroadcastCommand,
    ResolutionFailure,
    TenantContext,
    TriggerCommand,
    TriggerResult,
)


class TransactionValidator(Protocol):
    """Claims a transaction id for a new trigger."""

    def validate(self, transaction_id: str, organization_id: str, environment_id: str) -> None:
        """
        Atomically check and claim the id; raise DuplicateTransactionError if it
        is already taken in the tenant.
        """
        ...

    def release(self, transaction_id: str, organization_id: str, environment_id: str) -> None:
        """Give back a claimed id whose trigger failed before it was dispatched."""
        ...


class TopicSubscriberResolver(Protocol):
    """Looks up the current members of a topic."""

    def get_members(
        self,
        topic_id: str,
        environment_id: str,
        organization_id: str,
        user_id: str,
    ) -> Sequence[str]:
        """Return member subscriber ids in store order, or raise TopicLookupError."""
        ...


class ResolutionLogSink(Protocol):
    """Audit sink for topics that could not be resolved."""

    def record(self, failure: ResolutionFailure) -> None:
        ...


class WorkflowEngine(Protocol):
    """Executes, fans out and cancels triggered workflows."""

    def dispatch(self, command: TriggerCommand) -> TriggerResult:
        ...

    def dispatch_broadcast(self, command: BroadcastCommand) -> TriggerResult:
        ...

    def cancel(self, transaction_id: str, tenant: TenantContext) -> bool:
        """Cancel pending work for the transaction; False if nothing was pending."""
        ...
