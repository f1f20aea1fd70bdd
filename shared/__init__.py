"""
Shared infrastructure for the trigger core.

This package contains code used by recipient resolution, dispatch and the API:
- Domain models (ResolvedSubscriber, TriggerCommand, TriggerRequest, etc.)
- Collaborator protocols (topic lookups, log sink, validator, workflow engine)
- Data store for JSON-backed subscribers and topics
- Settings and the error taxonomy
"""

from shared.models import (
    BroadcastCommand,
    BroadcastRequest,
    ResolutionFailure,
    ResolvedSubscriber,
    Subscriber,
    TenantContext,
    Topic,
    TriggerCommand,
    TriggerRequest,
    TriggerResult,
    TriggerStatus,
    TriggerTransaction,
)
from shared.data_store import DataStore
from shared.config import Settings, get_settings

__all__ = [
    "BroadcastCommand",
    "BroadcastRequest",
    "ResolutionFailure",
    "ResolvedSubscriber",
    "Subscriber",
    "TenantContext",
    "Topic",
    "TriggerCommand",
    "TriggerRequest",
    "TriggerResult",
    "TriggerStatus",
    "TriggerTransaction",
    "DataStore",
    "Settings",
    "get_settings",
]
