"""
FastAPI application for the trigger core.

This application provides:
1. Trigger endpoints (/v1/events/trigger, /v1/events/trigger/broadcast)
2. Cancellation by transaction id (DELETE /v1/events/trigger/{transactionId})
3. Topic exploration for the calling tenant (/v1/topics)

Run with:
    uv run uvicorn api.main:app --reload

Then visit http://localhost:8000/docs for interactive API documentation.

Authentication is not handled here; the tenant is taken from the
X-Environment-Id, X-Organization-Id and X-User-Id headers.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException

from dispatch.trigger_service import TriggerService, build_trigger_service
from shared.config import configure_logging, get_settings
from shared.data_store import DataStore
from shared.exceptions import DispatchError, DuplicateTransactionError, TriggerValidationError
from shared.models import BroadcastRequest, TenantContext, Topic, TriggerRequest, TriggerResult

configure_logging(get_settings().log_level)

logger = logging.getLogger("events_api")

# Module-level instances (replaced through reset_api_state in tests)
_trigger_service: Optional[TriggerService] = None
_data_store: Optional[DataStore] = None


def get_data_store() -> DataStore:
    """Get the data store instance."""
    global _data_store
    if _data_store is None:
        _data_store = DataStore(data_dir=get_settings().data_dir)
    return _data_store


def get_trigger_service() -> TriggerService:
    """Get the trigger service instance."""
    global _trigger_service
    if _trigger_service is None:
        _trigger_service = build_trigger_service(data_store=get_data_store())
    return _trigger_service


def reset_api_state(
    trigger_service: Optional[TriggerService] = None,
    data_store: Optional[DataStore] = None,
) -> None:
    """Reset API state (for testing)."""
    global _trigger_service, _data_store
    _trigger_service = trigger_service
    _data_store = data_store


def get_tenant(
    environment_id: str = Header(..., alias="X-Environment-Id"),
    organization_id: str = Header(..., alias="X-Organization-Id"),
    user_id: str = Header(..., alias="X-User-Id"),
) -> TenantContext:
    """Build the tenant context of the caller from request headers."""
    return TenantContext(
        environment_id=environment_id,
        organization_id=organization_id,
        user_id=user_id,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    logger.info("Starting trigger API")
    yield
    logger.info("Shutting down")


app = FastAPI(
    title="Notification Trigger API",
    description="""
    Triggers notification workflows for subscribers and topics.

    ## Recipients

    `to` accepts a subscriber id, a subscriber object or a topic reference
    (`{"type": "Topic", "topicId": "..."}`), alone or in a list. Topics are
    expanded to their current members; a topic that cannot be resolved is
    skipped and logged, the trigger still goes out.
    """,
    version="1.0.0",
    lifespan=lifespan,
)


# =============================================================================
# Health Check
# =============================================================================

@app.get("/health", tags=["Health"])
def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "notification-trigger-api"}


# =============================================================================
# Events
# =============================================================================

def _raise_http_error(error: Exception) -> None:
    """Translate trigger errors into HTTP errors."""
    if isinstance(error, DuplicateTransactionError):
        raise HTTPException(status_code=409, detail=str(error)) from error
    if isinstance(error, TriggerValidationError):
        raise HTTPException(status_code=400, detail=str(error)) from error
    if isinstance(error, DispatchError):
        raise HTTPException(status_code=503, detail=str(error)) from error
    raise error


@app.post("/v1/events/trigger", response_model=TriggerResult, status_code=201, tags=["Events"])
def trigger_event(
    request: TriggerRequest,
    tenant: TenantContext = Depends(get_tenant),
    service: TriggerService = Depends(get_trigger_service),
) -> TriggerResult:
    """
    Trigger event.

    The trigger identifier (`name`) selects the workflow. Recipients are
    resolved to concrete subscribers before the workflow engine receives the
    trigger. Keep the returned transactionId to cancel pending work later.
    """
    logger.info(f"Trigger request: name={request.name}, env={tenant.environment_id}")
    try:
        return service.trigger(request, tenant)
    except (TriggerValidationError, DispatchError) as e:
        _raise_http_error(e)


@app.post("/v1/events/trigger/broadcast", response_model=TriggerResult, status_code=201, tags=["Events"])
def trigger_broadcast(
    request: BroadcastRequest,
    tenant: TenantContext = Depends(get_tenant),
    service: TriggerService = Depends(get_trigger_service),
) -> TriggerResult:
    """
    Broadcast event to all subscribers of the tenant.

    Useful for announcements; the workflow engine fans out.
    """
    logger.info(f"Broadcast request: name={request.name}, env={tenant.environment_id}")
    try:
        return service.trigger_broadcast(request, tenant)
    except (TriggerValidationError, DispatchError) as e:
        _raise_http_error(e)


@app.delete("/v1/events/trigger/{transaction_id}", response_model=bool, tags=["Events"])
def cancel_triggered_event(
    transaction_id: str,
    tenant: TenantContext = Depends(get_tenant),
    service: TriggerService = Depends(get_trigger_service),
) -> bool:
    """
    Cancel triggered event.

    Cancels active delays, digests and queued steps of the transaction.
    Returns false when there was nothing left to cancel.
    """
    try:
        return service.cancel(transaction_id, tenant)
    except DispatchError as e:
        _raise_http_error(e)


# =============================================================================
# Topics (for exploration)
# =============================================================================

@app.get("/v1/topics", response_model=list[Topic], tags=["Topics"])
def list_topics(
    tenant: TenantContext = Depends(get_tenant),
    data_store: DataStore = Depends(get_data_store),
) -> list[Topic]:
    """Get all topics of the calling tenant with their current members."""
    return data_store.get_topics(tenant.environment_id, tenant.organization_id)
