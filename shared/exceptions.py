"""
Error taxonomy for trigger processing.

Three families, each handled at a different place:
- Validation errors are raised before any resolution work and fail the request
- Topic lookup errors are recovered inside recipient resolution and never reach the caller
- Dispatch errors come from the workflow engine and fail the request (no retry here)
"""


class TriggerError(Exception):
    """Base class for all trigger processing errors."""


# =============================================================================
# Validation errors - surfaced to the caller, fatal for the request
# =============================================================================

class TriggerValidationError(TriggerError):
    """The trigger request cannot be processed as submitted."""


class DuplicateTransactionError(TriggerValidationError):
    """The transaction id is already used by a processed or in-flight trigger."""

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(
            f"transactionId property is not unique, please make sure all triggers "
            f"have a unique transactionId (got {transaction_id!r})"
        )


class InvalidActorError(TriggerValidationError):
    """The actor field does not denote a single concrete subscriber."""


class InvalidRecipientError(TriggerValidationError):
    """A recipient entry is structurally unusable (e.g. missing subscriberId)."""


# =============================================================================
# Topic lookup errors - recovered locally by the recipient resolver
# =============================================================================

class TopicLookupError(TriggerError):
    """Retrieving the members of a topic failed."""

    def __init__(self, topic_id: str, reason: str):
        self.topic_id = topic_id
        self.reason = reason
        super().__init__(f"Topic {topic_id!r}: {reason}")


class TopicNotFoundError(TopicLookupError):
    """The topic does not exist in the tenant."""

    def __init__(self, topic_id: str):
        super().__init__(topic_id, "topic not found")


# =============================================================================
# Dispatch errors - surfaced to the caller, no internal retry
# =============================================================================

class DispatchError(TriggerError):
    """Handing the trigger to the workflow engine failed."""


class WorkflowEngineUnavailableError(DispatchError):
    """The workflow engine refused or could not accept work."""


class DispatchTimeoutError(DispatchError):
    """The workflow engine did not answer within the configured timeout."""
