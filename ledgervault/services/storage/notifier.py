"""
Change Notifications

Reactive read model for the record store: views subscribe to the tables
they render and are told after every committed write that touches them,
so nothing has to poll.

Callbacks receive the set of table names that changed. Plain functions
are called inline; coroutine functions are scheduled on the running loop.
"""

import asyncio
import inspect
from typing import Awaitable, Callable, Iterable, Union

import structlog


logger = structlog.get_logger(__name__)

ChangeCallback = Callable[[frozenset[str]], Union[None, Awaitable[None]]]


class Subscription:
    """Handle returned by subscribe(); cancel() stops further notifications."""

    def __init__(self, notifier: "ChangeNotifier", tables: frozenset[str], callback: ChangeCallback):
        self._notifier = notifier
        self.tables = tables
        self.callback = callback
        self.active = True

    def cancel(self) -> None:
        if self.active:
            self.active = False
            self._notifier._remove(self)


class ChangeNotifier:
    """Fan-out of table change events to subscribers."""

    def __init__(self):
        self._subscriptions: list[Subscription] = []
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, tables: Iterable[str], callback: ChangeCallback) -> Subscription:
        subscription = Subscription(self, frozenset(tables), callback)
        self._subscriptions.append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def notify(self, tables: Iterable[str]) -> None:
        """
        Deliver a change to every subscriber watching one of the tables.

        A failing subscriber is logged; it never fails the write that
        triggered it.
        """
        changed = frozenset(tables)
        for subscription in list(self._subscriptions):
            if not subscription.active or not (subscription.tables & changed):
                continue
            try:
                result = subscription.callback(changed)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(self._task_done)
            except Exception as e:
                logger.error(
                    "subscriber_failed",
                    tables=sorted(changed),
                    error=str(e),
                )

    def _task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "subscriber_failed",
                error=str(task.exception()),
            )

    async def drain(self) -> None:
        """Wait for scheduled coroutine callbacks to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
