"""
Recipient decoding, classification and resolution.

- expressions: the closed set of recipient variants
- classifier: decoding raw recipients, classifying them, mapping direct ones
- resolver: turning a whole "to" list into ordered concrete subscribers
"""

from recipients.classifier import (
    as_expression,
    as_expressions,
    classify,
    map_to_resolved_subscriber,
    resolve_actor,
)
from recipients.expressions import (
    DirectId,
    DirectObject,
    RecipientKind,
    RecipientType,
    TopicReference,
)
from recipients.resolver import RecipientResolver, TopicResolution

__all__ = [
    "as_expression",
    "as_expressions",
    "classify",
    "map_to_resolved_subscriber",
    "resolve_actor",
    "DirectId",
    "DirectObject",
    "RecipientKind",
    "RecipientType",
    "TopicReference",
    "RecipientResolver",
    "TopicResolution",
]
