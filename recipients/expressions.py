"""
Recipient expression variants.

A trigger's "to" field mixes three shapes of recipient. Once decoded, every
entry is exactly one of the variants below; nothing downstream inspects raw
dicts for keys.

    "sub-001"                                  -> DirectId
    {"subscriberId": "sub-001", "email": ...}  -> DirectObject
    {"type": "Topic", "topicId": "eng"}        -> TopicReference
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union


class RecipientType(str, Enum):
    """Values of the `type` discriminator on structured recipients."""
    SUBSCRIBER = "Subscriber"
    TOPIC = "Topic"


class RecipientKind(str, Enum):
    """Classification result: resolved directly or through a topic lookup."""
    DIRECT = "direct"
    TOPIC = "topic"


@dataclass(frozen=True)
class DirectId:
    """A bare subscriber id."""
    subscriber_id: str


@dataclass(frozen=True)
class DirectObject:
    """
    A structured subscriber.

    `profile` is the raw mapping as submitted (subscriberId plus optional
    overrides) and is passed through to resolution unchanged. Entries of an
    unknown `type` land here too and may lack a subscriberId.
    """
    profile: dict[str, Any] = field(default_factory=dict)

    @property
    def subscriber_id(self) -> Optional[str]:
        return self.profile.get("subscriberId")


@dataclass(frozen=True)
class TopicReference:
    """A reference to a topic; empty topic_id means the reference was malformed."""
    topic_id: str


RecipientExpression = Union[DirectId, DirectObject, TopicReference]
