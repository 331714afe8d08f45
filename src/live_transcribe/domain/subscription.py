import asyncio
import logging
from collections.abc import AsyncIterator, Callable

from live_transcribe.domain.events import TranscriptFragment

logger = logging.getLogger(__name__)

_CLOSED = object()


class FragmentSubscription:
    """A scoped handle on a fragment stream.

    Iterating yields fragments until ``close()`` is called. ``close()`` runs
    the unsubscribe callback exactly once; later calls are no-ops.
    """

    def __init__(self, on_close: Callable[["FragmentSubscription"], None] | None = None) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._on_close = on_close
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, fragment: TranscriptFragment) -> None:
        if not self._closed:
            self._queue.put_nowait(fragment)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)
        if self._on_close:
            self._on_close(self)

    async def __aenter__(self) -> "FragmentSubscription":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()

    def __aiter__(self) -> AsyncIterator[TranscriptFragment]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[TranscriptFragment]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item


class FragmentBroadcaster:
    def __init__(self) -> None:
        self._subscriptions: set[FragmentSubscription] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self) -> FragmentSubscription:
        subscription = FragmentSubscription(on_close=self._subscriptions.discard)
        self._subscriptions.add(subscription)
        return subscription

    def publish(self, fragment: TranscriptFragment) -> None:
        for subscription in list(self._subscriptions):
            subscription.deliver(fragment)

    def close_all(self) -> None:
        for subscription in list(self._subscriptions):
            subscription.close()
