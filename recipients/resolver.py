"""
Recipient resolution for triggers.

Turns the heterogeneous "to" list of a trigger into a flat, ordered list of
concrete subscribers.

Design decisions:
- Direct entries come first, in input order; topic members follow, topic by
  topic in input order and member by member in the order the topic store
  returned them
- Each topic lookup produces its own TopicResolution value (members or a
  failure reason); the list of outcomes is split afterwards, so no lookup can
  touch another lookup's partial state
- Lookups run on a request-local thread pool, at most fanout_limit live at
  once, each with its own timeout counted from when it starts; outcomes are
  stored by input position, so completion order never affects the result
- A failed topic is logged to the resolution log and contributes nothing;
  it never fails the trigger
- No deduplication: a subscriber reachable twice is listed twice
"""

import logging
import time
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Optional

from recipients.classifier import RecipientValue, as_expressions, map_to_resolved_subscriber
from recipients.expressions import DirectId, DirectObject, TopicReference
from shared.collaborators import ResolutionLogSink, TopicSubscriberResolver
from shared.models import ResolutionFailure, ResolvedSubscriber, TenantContext

logger = logging.getLogger("recipient_resolver")

DEFAULT_FANOUT_LIMIT = 8


@dataclass(frozen=True)
class TopicResolution:
    """Outcome of looking up one topic: its member ids, or why it failed."""
    topic_id: str
    subscriber_ids: tuple[str, ...] = ()
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class RecipientResolver:
    """
    Resolves trigger recipients into concrete subscribers.

    Example:
        resolver = RecipientResolver(topic_resolver, resolution_log)
        subscribers = resolver.resolve(
            "tx-1",
            tenant,
            ["sub-001", {"type": "Topic", "topicId": "engineering"}],
        )
    """

    def __init__(
        self,
        topic_resolver: TopicSubscriberResolver,
        log_sink: ResolutionLogSink,
        fanout_limit: int = DEFAULT_FANOUT_LIMIT,
        lookup_timeout: Optional[float] = None,
    ):
        """
        Args:
            topic_resolver: Looks up topic members
            log_sink: Receives one ResolutionFailure per failed topic
            fanout_limit: Maximum concurrent topic lookups per call
            lookup_timeout: Seconds to wait for each topic; None waits forever
        """
        if fanout_limit < 1:
            raise ValueError("fanout_limit must be at least 1")
        self.topic_resolver = topic_resolver
        self.log_sink = log_sink
        self.fanout_limit = fanout_limit
        self.lookup_timeout = lookup_timeout

    def resolve(
        self,
        transaction_id: str,
        tenant: TenantContext,
        recipients: list[RecipientValue],
    ) -> list[ResolvedSubscriber]:
        """
        Resolve recipients into an ordered subscriber list.

        Raises:
            InvalidRecipientError: if an entry cannot be decoded; raised before
                any topic lookup happens
        """
        expressions = as_expressions(recipients)

        directs = [e for e in expressions if isinstance(e, (DirectId, DirectObject))]
        topics = [e for e in expressions if isinstance(e, TopicReference)]

        resolved = [map_to_resolved_subscriber(e) for e in directs]

        if topics:
            outcomes = self._lookup_topics(tenant, topics)
            successes = [o for o in outcomes if o.ok]
            failures = [o for o in outcomes if not o.ok]

            resolved.extend(
                ResolvedSubscriber(subscriber_id=subscriber_id)
                for outcome in successes
                for subscriber_id in outcome.subscriber_ids
            )
            for outcome in failures:
                self._record_failure(transaction_id, tenant, outcome)

        logger.info(
            f"Resolved {len(resolved)} subscriber(s) for transaction {transaction_id}: "
            f"{len(directs)} direct, {len(topics)} topic(s)"
        )
        return resolved

    # =========================================================================
    # Topic lookups
    # =========================================================================

    def _lookup_topics(self, tenant: TenantContext, topics: list[TopicReference]) -> list[TopicResolution]:
        """
        Look up every topic concurrently; outcomes come back in input order.

        At most fanout_limit lookups are live at once. Each lookup's timeout
        runs from the moment it is started, and a lookup that times out gives
        its slot to the next queued topic, so hung lookups never eat into the
        time of topics still waiting to run.
        """
        outcomes: list[Optional[TopicResolution]] = [None] * len(topics)
        queued = deque(enumerate(topics))
        running: dict[int, tuple[Future, float]] = {}

        # One thread per topic at most; abandoned lookups keep theirs
        executor = ThreadPoolExecutor(max_workers=len(topics), thread_name_prefix="topic-lookup")
        try:
            while queued or running:
                while queued and len(running) < self.fanout_limit:
                    index, topic = queued.popleft()
                    future = executor.submit(
                        self.topic_resolver.get_members,
                        topic.topic_id,
                        tenant.environment_id,
                        tenant.organization_id,
                        tenant.user_id,
                    )
                    running[index] = (future, time.monotonic())

                wait(
                    [future for future, _ in running.values()],
                    timeout=self._next_wait(running),
                    return_when=FIRST_COMPLETED,
                )

                now = time.monotonic()
                for index, (future, started) in list(running.items()):
                    if future.done():
                        outcomes[index] = self._collect(topics[index], future)
                    elif self.lookup_timeout is not None and now - started >= self.lookup_timeout:
                        future.cancel()
                        outcomes[index] = TopicResolution(
                            topic_id=topics[index].topic_id,
                            error=f"lookup timed out after {self.lookup_timeout}s",
                        )
                    else:
                        continue
                    del running[index]
        finally:
            # Lookups that timed out may still be running; don't wait for them
            executor.shutdown(wait=False, cancel_futures=True)

        return outcomes

    def _next_wait(self, running: dict[int, tuple[Future, float]]) -> Optional[float]:
        """Seconds until the earliest running lookup reaches its timeout."""
        if self.lookup_timeout is None:
            return None
        earliest = min(started for _, started in running.values())
        return max(0.0, earliest + self.lookup_timeout - time.monotonic())

    def _collect(self, topic: TopicReference, future: Future) -> TopicResolution:
        try:
            members = future.result()
        except Exception as e:
            return TopicResolution(topic_id=topic.topic_id, error=str(e) or type(e).__name__)

        return TopicResolution(topic_id=topic.topic_id, subscriber_ids=tuple(members))

    # =========================================================================
    # Failure reporting
    # =========================================================================

    def _record_failure(self, transaction_id: str, tenant: TenantContext, outcome: TopicResolution) -> None:
        failure = ResolutionFailure(
            topic_id=outcome.topic_id,
            transaction_id=transaction_id,
            environment_id=tenant.environment_id,
            organization_id=tenant.organization_id,
            user_id=tenant.user_id,
            reason=outcome.error or "unknown error",
        )
        logger.warning(f"Topic {outcome.topic_id!r} skipped for transaction {transaction_id}: {failure.reason}")

        # Fire-and-forget: the log sink must never fail the trigger
        try:
            self.log_sink.record(failure)
        except Exception as e:
            logger.error(f"Failed to record {failure}: {e}")
