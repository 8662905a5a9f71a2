"""Record feeds consumed by sessions.

ReplayBuffer holds the fully ingested demo (batch mode): every subscriber
replays the same immutable tuple from the start.

TickFeed is the live variant: a background thread drains the decoder and
publishes each record to every attached subscriber's bounded queue. What
happens when a queue is full is the backpressure policy:

    drop-oldest  discard the subscriber's oldest queued record (producer never waits)
    block        producer waits until every subscriber has room
"""
import asyncio
import threading
from typing import Callable, Iterable, Optional

from .calibration import MapCalibration
from .demo_source import DemoEventSource
from .ticks import TickRecord, build_tick_record

DROP_OLDEST = "drop-oldest"
BLOCK = "block"
BACKPRESSURE_POLICIES = (DROP_OLDEST, BLOCK)

_END = object()


class ReplayCursor:
    """Independent read position over a ReplayBuffer."""

    def __init__(self, records: tuple) -> None:
        self._it = iter(records)
        self.dropped = 0
        self.error: Optional[BaseException] = None

    async def next(self) -> Optional[TickRecord]:
        return next(self._it, None)

    def close(self) -> None:
        self._it = iter(())


class ReplayBuffer:
    finished = True
    error = None

    def __init__(self, records: Iterable[TickRecord]) -> None:
        self.records = tuple(records)

    @property
    def published(self) -> int:
        return len(self.records)

    def subscribe(self) -> ReplayCursor:
        return ReplayCursor(self.records)

    def summary(self) -> dict:
        return {"mode": "replay", "published": self.published, "finished": True, "error": None}


class Subscription:
    """One subscriber's bounded queue on a TickFeed."""

    def __init__(self, feed: "TickFeed", maxsize: int) -> None:
        self._feed = feed
        self.queue: asyncio.Queue = asyncio.Queue(maxsize)
        self.dropped = 0
        self.error: Optional[BaseException] = None
        self._ended = False

    def _offer(self, item: object) -> None:
        """Enqueue without waiting, discarding the oldest record if full."""
        if self.queue.full():
            self.queue.get_nowait()
            self.dropped += 1
        self.queue.put_nowait(item)

    async def next(self) -> Optional[TickRecord]:
        """Next record, or None once the feed has finished."""
        if self._ended:
            return None
        item = await self.queue.get()
        if item is _END:
            self._ended = True
            self.error = self._feed.error
            return None
        return item

    def close(self) -> None:
        self._ended = True
        self._feed._unsubscribe(self)
        # Releases a producer blocked on this queue
        while not self.queue.empty():
            self.queue.get_nowait()


class TickFeed:
    def __init__(self, maxsize: int = 256, policy: str = DROP_OLDEST) -> None:
        if policy not in BACKPRESSURE_POLICIES:
            raise ValueError(f"unknown backpressure policy {policy!r}, expected one of {BACKPRESSURE_POLICIES}")
        if maxsize < 1:
            raise ValueError("feed queue size must be >= 1")
        self.maxsize = maxsize
        self.policy = policy
        self.published = 0
        self.finished = False
        self.error: Optional[BaseException] = None
        self._subscribers: set = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        """Attach a subscriber; it sees records published from now on."""
        sub = Subscription(self, self.maxsize)
        if self.finished:
            sub.queue.put_nowait(_END)
        else:
            self._subscribers.add(sub)
        return sub

    def _unsubscribe(self, sub: Subscription) -> None:
        self._subscribers.discard(sub)

    async def _deliver(self, sub: Subscription, item: object) -> None:
        if self.policy == BLOCK:
            await sub.queue.put(item)
        else:
            sub._offer(item)

    async def publish(self, record: TickRecord) -> None:
        if self.finished:
            raise RuntimeError("publish() after finish()")
        self.published += 1
        for sub in list(self._subscribers):
            await self._deliver(sub, record)

    async def finish(self, error: Optional[BaseException] = None) -> None:
        """Mark end of stream; error is reported to subscribers as a failed feed."""
        if self.finished:
            return
        self.finished = True
        self.error = error
        subscribers = list(self._subscribers)
        self._subscribers.clear()
        for sub in subscribers:
            await self._deliver(sub, _END)

    def summary(self) -> dict:
        return {
            "mode": "live",
            "published": self.published,
            "finished": self.finished,
            "error": str(self.error) if self.error else None,
            "subscribers": self.subscriber_count,
            "backpressure": self.policy,
        }


def _run_ingestion(
    source: DemoEventSource,
    calibration: MapCalibration,
    feed: TickFeed,
    loop: asyncio.AbstractEventLoop,
    skip_dead: bool,
    log: Callable[[str], None],
    on_fatal: Optional[Callable[[BaseException], None]],
) -> None:
    """Drain the source into the feed. Runs on its own thread; feed calls hop onto the loop."""
    error: Optional[BaseException] = None
    count = 0
    try:
        for snapshot in source.snapshots():
            record = build_tick_record(snapshot, calibration, skip_dead=skip_dead)
            asyncio.run_coroutine_threadsafe(feed.publish(record), loop).result()
            count += 1
    except Exception as e:
        error = e
    finally:
        source.close()
        if not loop.is_closed():
            asyncio.run_coroutine_threadsafe(feed.finish(error), loop).result()
    if error is not None:
        log(f"Live ingestion failed after {count} ticks: {error}")
        if on_fatal is not None:
            on_fatal(error)
    else:
        log(f"Live ingestion finished: {count} ticks")


def start_live_ingestion(
    source: DemoEventSource,
    calibration: MapCalibration,
    feed: TickFeed,
    loop: asyncio.AbstractEventLoop,
    skip_dead: bool = False,
    log: Callable[[str], None] = lambda message: None,
    on_fatal: Optional[Callable[[BaseException], None]] = None,
) -> threading.Thread:
    """Start a daemon thread publishing the source's snapshots into feed.

    The thread owns source from here on and closes it on every exit path.
    """
    thread = threading.Thread(
        target=_run_ingestion,
        args=(source, calibration, feed, loop, skip_dead, log, on_fatal),
        daemon=True,
        name="live_ingestion",
    )
    thread.start()
    return thread
