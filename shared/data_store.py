"""
JSON-backed subscriber and topic store.

This module stands in for the topic membership store and the subscriber
directory. It reads tenant-scoped fixtures (subscribers.json, topics.json) from
a data directory.

Design decisions:
- Fixtures are the source of truth; the store is read-only
- Lazy loading, so constructing a store is free until the first lookup
- Everything is keyed by (environment_id, organization_id, id): two tenants
  may use the same topic key without seeing each other's members
- Loading takes a lock; reads return copies
"""

import json
import logging
import threading
from pathlib import Path
from typing import Optional

from shared.models import Subscriber, Topic

logger = logging.getLogger("data_store")

TenantKey = tuple[str, str]


class DataStore:
    """
    Tenant-scoped store of subscribers and topics.

    In a real deployment subscribers and topics live in their own services;
    the trigger core only ever reads topic members and, for broadcasts, the
    full subscriber list of a tenant.
    """

    def __init__(self, data_dir: Optional[Path] = None):
        """
        Initialize the data store.

        Args:
            data_dir: Directory containing the JSON fixtures.
                      Defaults to ./data relative to the project root.
        """
        if data_dir is None:
            data_dir = Path(__file__).parent.parent / "data"

        self.data_dir = Path(data_dir)
        self._lock = threading.Lock()

        # In-memory caches - loaded lazily, keyed by tenant then id
        self._subscribers: Optional[dict[TenantKey, dict[str, Subscriber]]] = None
        self._topics: Optional[dict[TenantKey, dict[str, Topic]]] = None

    # =========================================================================
    # Data Loading (lazy)
    # =========================================================================

    def _load_json(self, filename: str) -> list[dict]:
        """Load a JSON fixture file."""
        filepath = self.data_dir / filename
        if not filepath.exists():
            logger.warning(f"Fixture file missing: {filepath}")
            return []
        with open(filepath, "r") as f:
            return json.load(f)

    def _ensure_subscribers_loaded(self):
        """Lazy load subscribers from JSON."""
        if self._subscribers is not None:
            return
        with self._lock:
            if self._subscribers is None:
                subscribers: dict[TenantKey, dict[str, Subscriber]] = {}
                for raw in self._load_json("subscribers.json"):
                    subscriber = Subscriber(**raw)
                    key = (subscriber.environment_id, subscriber.organization_id)
                    subscribers.setdefault(key, {})[subscriber.subscriber_id] = subscriber
                self._subscribers = subscribers

    def _ensure_topics_loaded(self):
        """Lazy load topics from JSON."""
        if self._topics is not None:
            return
        with self._lock:
            if self._topics is None:
                topics: dict[TenantKey, dict[str, Topic]] = {}
                for raw in self._load_json("topics.json"):
                    topic = Topic(**raw)
                    key = (topic.environment_id, topic.organization_id)
                    topics.setdefault(key, {})[topic.topic_id] = topic
                self._topics = topics

    # =========================================================================
    # Subscriber Operations
    # =========================================================================

    def get_subscribers(self, environment_id: str, organization_id: str) -> list[Subscriber]:
        """
        Get every subscriber of a tenant, in fixture order.

        This is the population a broadcast trigger fans out to.
        """
        self._ensure_subscribers_loaded()
        return list(self._subscribers.get((environment_id, organization_id), {}).values())

    # =========================================================================
    # Topic Operations
    # =========================================================================

    def get_topic(self, environment_id: str, organization_id: str, topic_id: str) -> Optional[Topic]:
        """Get a topic by key within a tenant."""
        self._ensure_topics_loaded()
        topic = self._topics.get((environment_id, organization_id), {}).get(topic_id)
        if topic is None:
            return None
        return topic.model_copy(deep=True)

    def get_topics(self, environment_id: str, organization_id: str) -> list[Topic]:
        """Get all topics of a tenant."""
        self._ensure_topics_loaded()
        return [
            topic.model_copy(deep=True)
            for topic in self._topics.get((environment_id, organization_id), {}).values()
        ]

    def get_topic_subscriber_ids(
        self,
        environment_id: str,
        organization_id: str,
        topic_id: str,
    ) -> Optional[list[str]]:
        """
        Get the member ids of a topic, or None if the topic does not exist.

        An existing topic with no members returns an empty list.
        """
        topic = self.get_topic(environment_id, organization_id, topic_id)
        if topic is None:
            return None
        return list(topic.subscribers)


# Module-level singleton for convenience
# In tests, create a new DataStore instance instead
_default_store: Optional[DataStore] = None


def get_data_store() -> DataStore:
    """Get the default data store singleton."""
    global _default_store
    if _default_store is None:
        _default_store = DataStore()
    return _default_store
