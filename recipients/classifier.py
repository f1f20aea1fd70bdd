"""
Recipient classification and mapping.

Decoding rule (applied identically to every "to" entry and to the actor):
- a string is always a direct subscriber
- a mapping is a topic reference only when its `type` equals "Topic"
- a mapping with no `type`, type "Subscriber", or any other type is a direct
  subscriber; unknown types are accepted so that newer clients sending new
  recipient kinds keep working
- subscriberId is required for untyped and "Subscriber" entries only; entries
  of an unknown type are carried through as submitted

Everything here is pure: no I/O, no blocking.
"""

import logging
from collections.abc import Mapping, Sequence
from typing import Any, Optional, Union

from pydantic import ValidationError

from recipients.expressions import (
    DirectId,
    DirectObject,
    RecipientExpression,
    RecipientKind,
    RecipientType,
    TopicReference,
)
from shared.exceptions import InvalidActorError, InvalidRecipientError
from shared.models import ResolvedSubscriber

logger = logging.getLogger("recipient_classifier")

RecipientValue = Union[str, Mapping[str, Any], DirectId, DirectObject, TopicReference]


def as_expression(value: RecipientValue) -> RecipientExpression:
    """
    Decode one raw recipient into its variant.

    Raises:
        InvalidRecipientError: for values that are neither strings nor mappings,
            and for untyped or "Subscriber" objects without a usable subscriberId
    """
    if isinstance(value, (DirectId, DirectObject, TopicReference)):
        return value

    if isinstance(value, str):
        return DirectId(subscriber_id=value)

    if not isinstance(value, Mapping):
        raise InvalidRecipientError(
            f"Recipient must be a subscriber id or an object, got {type(value).__name__}"
        )

    discriminator = value.get("type")

    if discriminator == RecipientType.TOPIC.value:
        topic_id = value.get("topicId")
        return TopicReference(topic_id=topic_id if isinstance(topic_id, str) else "")

    if discriminator is not None and discriminator != RecipientType.SUBSCRIBER.value:
        logger.debug(f"Unknown recipient type {discriminator!r}, carrying through as direct")
        return DirectObject(profile=dict(value))

    subscriber_id = value.get("subscriberId")
    if not isinstance(subscriber_id, str) or not subscriber_id:
        raise InvalidRecipientError("Subscriber recipient is missing subscriberId")
    return DirectObject(profile=dict(value))


def as_expressions(value: Union[RecipientValue, Sequence[RecipientValue], None]) -> list[RecipientExpression]:
    """Decode the "to" field, which may hold one recipient or a list of them."""
    if value is None:
        return []
    if isinstance(value, (str, Mapping, DirectId, DirectObject, TopicReference)):
        return [as_expression(value)]
    return [as_expression(item) for item in value]


def classify(value: RecipientValue) -> RecipientKind:
    """Tell whether a recipient is resolved directly or through a topic."""
    expr = as_expression(value)
    if isinstance(expr, (DirectId, DirectObject)):
        return RecipientKind.DIRECT
    if isinstance(expr, TopicReference):
        return RecipientKind.TOPIC
    raise TypeError(f"Unhandled recipient variant: {type(expr).__name__}")


def map_to_resolved_subscriber(value: RecipientValue) -> ResolvedSubscriber:
    """
    Map a direct recipient to a ResolvedSubscriber.

    A bare id becomes {"subscriberId": id}; a subscriber object passes through
    with all of its fields. Topic references must go through topic resolution
    and are refused here.
    """
    expr = as_expression(value)

    if isinstance(expr, DirectId):
        return ResolvedSubscriber(subscriber_id=expr.subscriber_id)

    if isinstance(expr, DirectObject):
        try:
            return ResolvedSubscriber.model_validate(expr.profile)
        except ValidationError as e:
            raise InvalidRecipientError(
                f"Invalid subscriber {expr.profile.get('subscriberId')!r}: {e.error_count()} field error(s)"
            ) from e

    if isinstance(expr, TopicReference):
        raise TypeError(f"Topic {expr.topic_id!r} must be resolved before mapping")

    raise TypeError(f"Unhandled recipient variant: {type(expr).__name__}")


def resolve_actor(value: Optional[RecipientValue]) -> Optional[ResolvedSubscriber]:
    """
    Map the optional actor field.

    An actor is always one concrete subscriber, so a topic, or an entry of an
    unknown kind without a subscriberId, is a request error.
    """
    if value is None:
        return None

    try:
        expr = as_expression(value)
    except InvalidRecipientError as e:
        raise InvalidActorError(f"Invalid actor: {e}") from e

    if classify(expr) is RecipientKind.TOPIC:
        raise InvalidActorError("Actor must be a subscriber, not a topic")

    try:
        actor = map_to_resolved_subscriber(expr)
    except InvalidRecipientError as e:
        raise InvalidActorError(f"Invalid actor: {e}") from e

    if not actor.subscriber_id:
        raise InvalidActorError("Actor must carry a subscriberId")
    return actor
