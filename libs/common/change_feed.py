"""In-process change notifications.

Writers publish a topic after committing; readers register a listener and get
back a disposer. Listeners are plain callables invoked synchronously on
``publish`` and must not block; store-backed readers schedule their own reload.

Usage:
    from libs.common.change_feed import change_feed

    dispose = change_feed.listen("donation_events:user-1", on_change)
    ...
    change_feed.publish("donation_events:user-1")
    dispose()
"""

from collections import defaultdict
from typing import Callable

from libs.common.logging import get_logger

logger = get_logger(__name__)

Listener = Callable[[], None]
Disposer = Callable[[], None]


class ChangeFeed:
    """Topic -> listener registry."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def listen(self, topic: str, listener: Listener) -> Disposer:
        self._listeners[topic].append(listener)
        removed = False

        def dispose() -> None:
            nonlocal removed
            if removed:
                return
            removed = True
            listeners = self._listeners.get(topic)
            if listeners and listener in listeners:
                listeners.remove(listener)
                if not listeners:
                    del self._listeners[topic]

        return dispose

    def publish(self, topic: str) -> None:
        for listener in list(self._listeners.get(topic, ())):
            try:
                listener()
            except Exception:
                logger.exception("Change listener failed for topic %s", topic)

    def listener_count(self, topic: str) -> int:
        return len(self._listeners.get(topic, ()))


change_feed = ChangeFeed()


def donation_events_topic(user_id: str) -> str:
    return f"donation_events:{user_id}"
