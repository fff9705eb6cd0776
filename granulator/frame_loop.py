"""Per-tracker frame loops.

Each tracker runs in its own ``FrameLoop``: an asyncio task ticking at display rate,
skipping ticks to bound its cost, calling the tracker's step on the remaining ones and
publishing the resulting snapshot on a ``SnapshotChannel``. Loops share nothing, so a
slow detection or a failing microphone in one of them doesn't affect the others.

The loop owns its acquisition (camera, microphone, detector...): ``enable`` enters it,
``disable`` stops the task and releases it. Nothing is published after ``disable``
returns. A step caught mid-way (a detection running in a worker thread, say) is let
finish before its acquisition is released; ``wait_closed`` awaits that release.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import time
from typing import Any, Callable, ContextManager, NamedTuple, Optional

logger = logging.getLogger(__name__)

DFLT_TICK_SECONDS = 1 / 60


class Throttle(NamedTuple):
    every_n_ticks: int = 1
    min_interval: float = 0.0  # seconds


DFLT_HAND_THROTTLE = Throttle(1, 0.0)
DFLT_FACE_THROTTLE = Throttle(3, 0.012)
DFLT_AUDIO_THROTTLE = Throttle(2, 0.014)


class AcquisitionFailure(Exception):
    """The camera, the microphone or a detector could not be set up."""


class ChannelClosed(Exception):
    """Raised by ``SnapshotChannel.get`` once the channel is closed."""


class SnapshotChannel:
    """
    A single-consumer channel holding only the latest snapshot.

    Publishing never blocks: a snapshot the consumer hasn't taken yet is replaced by
    the newer one (and counted in ``n_dropped``). The consumer either awaits ``get``
    or iterates with ``async for``, which ends when the channel is closed.
    """

    def __init__(self):
        self._latest = None
        self._has_new = False
        self._closed = False
        self._waiter: Optional[asyncio.Future] = None
        self.n_published = 0
        self.n_dropped = 0

    @property
    def latest(self):
        """The last published snapshot, taken or not."""
        return self._latest

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, snapshot) -> bool:
        if self._closed:
            return False
        if self._has_new:
            self.n_dropped += 1
        self._latest = snapshot
        self._has_new = True
        self.n_published += 1
        self._wake()
        return True

    async def get(self):
        """Wait for, and take, the next snapshot."""
        while not self._has_new:
            if self._closed:
                raise ChannelClosed()
            if self._waiter is not None:
                raise RuntimeError("SnapshotChannel supports a single consumer")
            self._waiter = asyncio.get_running_loop().create_future()
            try:
                await self._waiter
            finally:
                self._waiter = None
        self._has_new = False
        return self._latest

    def poll(self):
        """Take the next snapshot if there is one, without waiting. None otherwise."""
        if not self._has_new:
            return None
        self._has_new = False
        return self._latest

    def close(self) -> None:
        self._closed = True
        self._has_new = False
        self._wake()

    def _wake(self):
        if self._waiter is not None and not self._waiter.done():
            self._waiter.set_result(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        try:
            return await self.get()
        except ChannelClosed:
            raise StopAsyncIteration


class FrameLoop:
    """
    Runs ``step`` once per (non-skipped) tick and publishes what it returns.

    Parameters
    ----------
    step : callable
        Called with the acquired resource; returns (or, if a coroutine function,
        resolves to) a snapshot, or None to publish nothing this tick.
    acquire : callable, optional
        Returns a context manager whose value is the resource handed to ``step``.
        Entered by ``enable``, exited by ``disable``.
    throttle : Throttle
        Only every ``every_n_ticks``-th tick is considered, and only if at least
        ``min_interval`` seconds have passed since the last processed one.
    tick_seconds : float
        Period of the ticks.
    """

    def __init__(
        self,
        step: Callable[[Any], Any],
        *,
        acquire: Optional[Callable[[], ContextManager]] = None,
        name: str = 'tracker',
        throttle: Throttle = DFLT_HAND_THROTTLE,
        tick_seconds: float = DFLT_TICK_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._step = step
        self._acquire = acquire
        self.name = name
        self.throttle = Throttle(*throttle)
        self.tick_seconds = tick_seconds
        self._clock = clock
        self._stack: Optional[contextlib.ExitStack] = None
        self._task: Optional[asyncio.Task] = None
        self._closing: Optional[asyncio.Task] = None
        self._stepping = False
        self.channel = SnapshotChannel()
        self.n_processed = 0
        self.n_failures = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None

    async def enable(self) -> None:
        """
        Acquire the resources and start ticking.

        Raises ``AcquisitionFailure`` (and stays stopped) if acquisition fails.
        """
        if self._task is not None:
            return
        await self.wait_closed()
        stack = contextlib.ExitStack()
        try:
            resource = stack.enter_context(self._acquire()) if self._acquire else None
        except AcquisitionFailure:
            stack.close()
            raise
        except Exception as e:
            stack.close()
            raise AcquisitionFailure(f"{self.name}: {e}") from e

        self._stack = stack
        self.channel = SnapshotChannel()
        self._task = asyncio.get_running_loop().create_task(
            self._run(resource, self.channel), name=f"{self.name}-frame-loop"
        )
        logger.info("%s loop enabled", self.name)

    def disable(self) -> None:
        """
        Stop ticking and release the resources. Idempotent.

        If a step is in progress, the task is left to finish it (publishing nothing)
        and the resources are released when it returns.
        """
        task, self._task = self._task, None
        stack, self._stack = self._stack, None
        self.channel.close()
        if task is not None and self._stepping:
            self._closing = task
            task.add_done_callback(lambda _: self._release(stack))
            return
        if task is not None:
            task.cancel()
        self._release(stack)

    async def wait_closed(self) -> None:
        """Wait until the resources of a disabled loop are released."""
        closing, self._closing = self._closing, None
        if closing is not None:
            await asyncio.wait([closing])

    def _release(self, stack: Optional[contextlib.ExitStack]) -> None:
        if stack is not None:
            stack.close()
            logger.info("%s loop disabled", self.name)

    async def _run(self, resource, channel: SnapshotChannel) -> None:
        every_n_ticks, min_interval = self.throttle
        tick = 0
        last_processed = None
        while not channel.closed:
            await asyncio.sleep(self.tick_seconds)
            tick += 1
            if tick % every_n_ticks:
                continue
            now = self._clock()
            if last_processed is not None and now - last_processed < min_interval:
                continue
            last_processed = now

            self._stepping = True
            try:
                snapshot = self._step(resource)
                if inspect.isawaitable(snapshot):
                    snapshot = await snapshot
            except asyncio.CancelledError:
                raise
            except Exception:
                self.n_failures += 1
                logger.warning("%s frame processing error", self.name, exc_info=True)
                continue
            finally:
                self._stepping = False

            if channel.closed:
                return
            self.n_processed += 1
            if snapshot is not None:
                channel.publish(snapshot)

    async def __aenter__(self):
        await self.enable()
        return self

    async def __aexit__(self, *exc):
        self.disable()
        await self.wait_closed()


# -------------------------------------------------------------------------------
# Loops of the trackers
# -------------------------------------------------------------------------------


def landmark_loop(
    tracker,
    acquire_detector: Callable[[], ContextManager],
    frame_source: Callable[[], Any],
    *,
    throttle: Throttle = DFLT_HAND_THROTTLE,
    clock: Callable[[], float] = time.monotonic,
    **loop_kwargs,
) -> FrameLoop:
    """
    A loop feeding ``tracker`` (hand or face) with the landmarks the detector finds
    in the frames of ``frame_source``.

    ``frame_source()`` returns the latest camera frame, or None if there is none
    yet (in which case the tick is skipped). The detector's ``detect`` is awaited
    before the next frame is considered.
    """

    async def step(detector):
        frame = frame_source()
        if frame is None:
            return None
        landmarks = await detector.detect(frame, int(clock() * 1000))
        return tracker.process(landmarks)

    return FrameLoop(
        step,
        acquire=acquire_detector,
        name=getattr(tracker, 'name', 'landmarks'),
        throttle=throttle,
        clock=clock,
        **loop_kwargs,
    )


def audio_loop(
    tracker,
    acquire_source: Callable[[], ContextManager],
    *,
    throttle: Throttle = DFLT_AUDIO_THROTTLE,
    clock: Callable[[], float] = time.monotonic,
    **loop_kwargs,
) -> FrameLoop:
    """A loop feeding ``tracker`` with the spectra read from a spectrum source."""

    def step(source):
        return tracker.process(source.read())

    return FrameLoop(
        step,
        acquire=acquire_source,
        name=getattr(tracker, 'name', 'audio'),
        throttle=throttle,
        clock=clock,
        **loop_kwargs,
    )
