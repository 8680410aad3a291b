"""
In-process change feed

Ledger and notification writes publish an event after their transaction has
committed. Subscribers (UI push, cache invalidation, ...) register per event
type. A failing subscriber is logged and never affects the writer. When
``CHANGE_FEED_QUEUE`` is configured every event is also forwarded to SQS for
out-of-process consumers.
"""

import logging
from collections import defaultdict
from typing import Callable, DefaultDict, List, Optional

from localhy.config import Settings
from localhy.providers.queue.events import ChangeEvent
from localhy.providers.queue.sqs import SQSClient

logger = logging.getLogger(__name__)

Subscriber = Callable[[ChangeEvent], None]


class ChangeFeed:
    def __init__(self, settings: Optional[Settings] = None, sqs_client: Optional[SQSClient] = None):
        self._subscribers: DefaultDict[str, List[Subscriber]] = defaultdict(list)
        self.queue_name = settings.CHANGE_FEED_QUEUE if settings else None
        self._sqs = sqs_client
        self._settings = settings

    def subscribe(self, event_type: str, handler: Subscriber) -> Callable[[], None]:
        """Register a handler; returns a function that removes it again."""
        self._subscribers[event_type].append(handler)

        def unsubscribe() -> None:
            if handler in self._subscribers[event_type]:
                self._subscribers[event_type].remove(handler)

        return unsubscribe

    def publish(self, event: ChangeEvent) -> int:
        """Deliver to subscribers; returns how many handled it without error."""
        delivered = 0
        for handler in list(self._subscribers.get(event.event_type, [])) + list(
            self._subscribers.get("*", [])
        ):
            try:
                handler(event)
                delivered += 1
            except Exception as e:
                logger.error(
                    f"Change feed subscriber failed for {event.event_type} "
                    f"(user {event.user_id}): {str(e)}",
                    exc_info=True,
                )

        if self.queue_name:
            self._forward(event)
        return delivered

    def _forward(self, event: ChangeEvent) -> None:
        try:
            if self._sqs is None:
                self._sqs = SQSClient(self._settings)
            self._sqs.send_message(self.queue_name, event.to_message(), group_id=event.user_id)
        except Exception as e:
            logger.error(f"Failed to forward {event.event_type} to {self.queue_name}: {str(e)}")
