"""Observer registry: ordered, optionally tagged subscriptions.

notify() walks a copy of the subscription list, so an observer may
unsubscribe itself (or another observer) from inside its own callback.
A subscription removed before its turn is skipped; nothing is notified twice.
"""

from __future__ import annotations

from typing import Any, Callable, Collection, Iterator

Observer = Callable[[Any], None]


class Subscription:
    """Handle returned by subscribe(). dispose() is idempotent."""

    __slots__ = ("observer", "tag", "context", "_registry", "_active")

    def __init__(self, registry: ObserverRegistry, observer: Observer, tag, context) -> None:
        self.observer = observer
        self.tag = tag
        self.context = context
        self._registry = registry
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def dispose(self) -> None:
        self._registry.unsubscribe(self)

    def __repr__(self) -> str:
        state = "active" if self._active else "disposed"
        return f"Subscription(tag={self.tag!r}, {state})"


class ObserverRegistry:
    """Subscriptions of one container, in subscription order."""

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []

    def subscribe(self, observer: Observer, tag=None, context=None) -> Subscription:
        subscription = Subscription(self, observer, tag, context)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if not subscription._active:
            return
        subscription._active = False
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            pass  # already removed by clear()

    def notify(self, source, tags: Collection | None = None) -> int:
        """Call every matching observer with source. Returns how many ran."""
        count = 0
        for subscription in list(self._subscriptions):
            if not subscription._active:
                continue
            if tags and subscription.tag not in tags:
                continue
            subscription.observer(source)
            count += 1
        return count

    def clear(self) -> None:
        for subscription in self._subscriptions:
            subscription._active = False
        self._subscriptions.clear()

    @property
    def context(self):
        """Context of the most recent subscription that supplied one."""
        for subscription in reversed(self._subscriptions):
            if subscription.context is not None:
                return subscription.context
        return None

    def __iter__(self) -> Iterator[Subscription]:
        return iter(list(self._subscriptions))

    def __len__(self) -> int:
        return len(self._subscriptions)

    def __repr__(self) -> str:
        return f"ObserverRegistry({len(self._subscriptions)} subscriptions)"
