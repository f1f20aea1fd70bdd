"""
Domain models for trigger recipient resolution and dispatch.

These models cover three groups:
- Tenant-scoped store records (Subscriber, Topic) read by the in-memory collaborators
- The trigger request/response contract (TriggerRequest, BroadcastRequest, TriggerResult)
- The values flowing through the core (ResolvedSubscriber, TriggerTransaction,
  ResolutionFailure, TriggerCommand, BroadcastCommand)

Design decisions:
- Using Pydantic for validation and serialization
- Wire names are camelCase (subscriberId, transactionId) via aliases; Python code
  uses snake_case and both are accepted on input
- Values that must not change after creation (tenant, transaction, failures) are frozen
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Enums and markers
# =============================================================================

class TriggerStatus(str, Enum):
    """Acknowledgement statuses reported by the workflow engine."""
    PROCESSED = "processed"
    SUBSCRIBER_MISSING = "subscriber_id_missing"


# Audience marker for broadcast commands: the engine fans out to every subscriber
ALL_SUBSCRIBERS = "all_subscribers"

# A single raw recipient as it arrives in a request: "sub-1" or {"subscriberId": ...}
RecipientInput = Union[str, dict[str, Any]]


# =============================================================================
# Tenant and transaction identity
# =============================================================================

class TenantContext(BaseModel):
    """
    Who is triggering: the environment, organization and user of the caller.

    Read-only input threaded through every collaborator call.
    """
    environment_id: str = Field(..., alias="environmentId")
    organization_id: str = Field(..., alias="organizationId")
    user_id: str = Field(..., alias="userId")

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class TriggerTransaction(BaseModel):
    """
    Transactional identity of one trigger.

    The transaction id is the idempotency key and the only handle for
    cancelling pending work later on.
    """
    transaction_id: str = Field(..., alias="transactionId")
    environment_id: str = Field(..., alias="environmentId")
    organization_id: str = Field(..., alias="organizationId")
    user_id: str = Field(..., alias="userId")

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @classmethod
    def for_tenant(cls, transaction_id: str, tenant: TenantContext) -> "TriggerTransaction":
        return cls(
            transaction_id=transaction_id,
            environment_id=tenant.environment_id,
            organization_id=tenant.organization_id,
            user_id=tenant.user_id,
        )

    @property
    def tenant(self) -> TenantContext:
        return TenantContext(
            environment_id=self.environment_id,
            organization_id=self.organization_id,
            user_id=self.user_id,
        )


# =============================================================================
# Store records
# =============================================================================

class Subscriber(BaseModel):
    """
    A subscriber known to a tenant.

    The broadcast path targets every subscriber of the tenant.
    """
    subscriber_id: str = Field(..., description="Tenant-unique subscriber identifier")
    environment_id: str = Field(..., description="Owning environment")
    organization_id: str = Field(..., description="Owning organization")
    first_name: Optional[str] = Field(default=None)
    last_name: Optional[str] = Field(default=None)
    email: Optional[str] = Field(default=None)
    phone: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Topic(BaseModel):
    """
    A named, dynamically-membered group of subscribers.

    Members are resolved at trigger time, so the same trigger sent twice may
    reach different people if membership changed in between.
    """
    topic_id: str = Field(..., description="Tenant-unique topic key")
    name: str = Field(..., description="Display name")
    environment_id: str = Field(..., description="Owning environment")
    organization_id: str = Field(..., description="Owning organization")
    subscribers: list[str] = Field(
        default_factory=list,
        description="Member subscriber ids, in insertion order",
    )


# =============================================================================
# Resolution output
# =============================================================================

class ResolvedSubscriber(BaseModel):
    """
    A concrete recipient after resolution.

    Profile overrides supplied with a structured recipient are carried through
    as-is, including keys this model does not know about. subscriber_id is
    only None for recipients of a kind this service does not know (for example
    {"type": "Tenant", "tenantId": ...}); the workflow engine interprets those.
    """
    subscriber_id: Optional[str] = Field(default=None, alias="subscriberId")
    email: Optional[str] = None
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    phone: Optional[str] = None
    avatar: Optional[str] = None
    locale: Optional[str] = None
    data: Optional[dict[str, Any]] = None

    model_config = ConfigDict(populate_by_name=True, extra="allow", frozen=True)


@dataclass(frozen=True)
class ResolutionFailure:
    """
    A topic that could not be resolved during a trigger.

    Recorded to the log sink; never aborts the trigger. topic_id is the empty
    string when the topic reference itself was malformed.
    """
    topic_id: str
    transaction_id: str
    environment_id: str
    organization_id: str
    user_id: str
    reason: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __str__(self) -> str:
        return f"ResolutionFailure(topic={self.topic_id!r}, tx={self.transaction_id[:8]}, reason={self.reason})"


# =============================================================================
# Commands handed to the workflow engine
# =============================================================================

class TriggerCommand(BaseModel):
    """A fully resolved trigger, ready for the workflow engine."""
    transaction: TriggerTransaction
    template_identifier: str
    payload: dict[str, Any] = Field(default_factory=dict)
    overrides: dict[str, Any] = Field(default_factory=dict)
    to: list[ResolvedSubscriber] = Field(
        default_factory=list,
        description="Recipients in resolution order (directs first, then topic members)",
    )
    actor: Optional[ResolvedSubscriber] = None


class BroadcastCommand(BaseModel):
    """A trigger aimed at the tenant's whole subscriber population."""
    transaction: TriggerTransaction
    template_identifier: str
    payload: dict[str, Any] = Field(default_factory=dict)
    overrides: dict[str, Any] = Field(default_factory=dict)
    actor: Optional[ResolvedSubscriber] = None
    audience: Literal["all_subscribers"] = ALL_SUBSCRIBERS


# =============================================================================
# Request / response contract
# =============================================================================

class TriggerRequest(BaseModel):
    """
    Request to trigger a workflow for a set of recipients.

    `to` accepts a single recipient or a list. Each recipient is a subscriber
    id string, a subscriber object ({"subscriberId": ..., overrides...}) or a
    topic reference ({"type": "Topic", "topicId": ...}).
    """
    name: str = Field(..., min_length=1, description="Template (workflow) trigger identifier")
    payload: dict[str, Any] = Field(default_factory=dict)
    overrides: Optional[dict[str, Any]] = Field(default=None)
    to: Union[RecipientInput, list[RecipientInput]] = Field(
        ...,
        description="One recipient expression or a list of them",
    )
    actor: Optional[RecipientInput] = Field(
        default=None,
        description="The subscriber who performed the action, if any",
    )
    transaction_id: Optional[str] = Field(
        default=None,
        alias="transactionId",
        description="Idempotency key; generated when omitted",
    )

    model_config = ConfigDict(populate_by_name=True)


class BroadcastRequest(BaseModel):
    """Request to trigger a workflow for every subscriber of the tenant."""
    name: str = Field(..., min_length=1, description="Template (workflow) trigger identifier")
    payload: dict[str, Any] = Field(default_factory=dict)
    overrides: Optional[dict[str, Any]] = Field(default=None)
    actor: Optional[RecipientInput] = Field(default=None)
    transaction_id: Optional[str] = Field(default=None, alias="transactionId")

    model_config = ConfigDict(populate_by_name=True)


class TriggerResult(BaseModel):
    """Acknowledgement returned by the workflow engine, passed back verbatim."""
    acknowledged: bool
    status: str
    transaction_id: str = Field(..., alias="transactionId")

    model_config = ConfigDict(populate_by_name=True)
