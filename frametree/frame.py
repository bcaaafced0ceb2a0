"""A single named coordinate frame and its history of transforms relative to its parent."""

import logging
from bisect import bisect_left
from typing import List, Mapping, NamedTuple, Optional, Union

from frametree.config import DEFAULT_MAX_CAPACITY, DEFAULT_MAX_STORAGE_NS
from frametree.failures import EmptyFrame, FrameCycleError, LookupFailure, ReadOnlyFrameError, SampleUnavailable
from frametree.transform import Transform

logger = logging.getLogger(__name__)


class TimedSample(NamedTuple):
    """The pose of a frame relative to its parent at one instant."""
    time_ns: int
    transform: Transform


class _SampleBuffer(object):
    """Append-only storage shared by successive versions of one frame.

    Entries are never changed or removed once written, so a version that only looks at `[start, end)` keeps seeing the
    same samples while newer versions append past its end.
    """
    __slots__ = ("times", "samples")

    def __init__(self, times: Optional[List[int]] = None, samples: Optional[List[TimedSample]] = None) -> None:
        # Kept in lockstep: times[i] == samples[i].time_ns.
        self.times: List[int] = times if times is not None else []
        self.samples: List[TimedSample] = samples if samples is not None else []


class CoordinateFrame(object):
    """A named frame with a parent handle and a time-sorted list of samples.

    The parent is stored by name, as a handle into the owning tree's frame map, rather than as a reference to another
    `CoordinateFrame`. Each sample expresses this frame relative to whichever parent was current when it was recorded;
    changing the parent only changes where future tree walks go next.

    A frame is a window `[start, end)` over a sample buffer it may share with its copies. `copy()` is O(1), and an
    in-order `add_sample` on the copy holding the newest end appends to the shared buffer in O(1) without disturbing
    older copies. Frames published by a `TransformTree` are frozen; modify a `copy()` instead.
    """

    def __init__(self, frame_id: str, parent_id: Optional[str] = None, *,
                 max_storage_ns: int = DEFAULT_MAX_STORAGE_NS,
                 max_capacity: int = DEFAULT_MAX_CAPACITY) -> None:
        self._id = frame_id
        self._parent_id = parent_id
        self._max_storage_ns = max_storage_ns
        self._max_capacity = max_capacity
        self._buffer = _SampleBuffer()
        self._start = 0
        self._end = 0
        self._frozen = False

    @property
    def id(self) -> str:
        return self._id

    @property
    def parent_id(self) -> Optional[str]:
        """The name of the current parent frame, or None for a root."""
        return self._parent_id

    @property
    def samples(self) -> List[TimedSample]:
        """A copy of the recorded samples, oldest first."""
        return self._buffer.samples[self._start:self._end]

    @property
    def has_samples(self) -> bool:
        return self._end > self._start

    @property
    def earliest_time(self) -> Optional[int]:
        return self._buffer.times[self._start] if self.has_samples else None

    @property
    def latest_time(self) -> Optional[int]:
        return self._buffer.times[self._end - 1] if self.has_samples else None

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __len__(self) -> int:
        return self._end - self._start

    def freeze(self) -> None:
        """Make this frame read-only. Used by the tree when it publishes a frame."""
        self._frozen = True

    def _check_writable(self) -> None:
        if self._frozen:
            raise ReadOnlyFrameError(f"Frame '{self._id}' is published and read-only; modify a copy() instead.")

    def set_parent(self, parent_id: Optional[str]) -> None:
        """Point this frame at a new parent. Recorded samples are left untouched."""
        self._check_writable()
        if parent_id != self._parent_id:
            logger.debug("Frame '%s' parent changed from %r to %r.", self._id, self._parent_id, parent_id)
        self._parent_id = parent_id

    def add_sample(self, time_ns: int, transform: Transform) -> None:
        """Record this frame's transform relative to its parent at `time_ns`.

        Samples normally arrive in time order, so appending is the fast path and costs O(1). An out-of-order sample is
        inserted in place, and a sample with an already recorded timestamp replaces the old one; both rebuild this
        frame's buffer in O(n), since entries other versions can see are never modified.
        """
        self._check_writable()
        time_ns = int(time_ns)
        sample = TimedSample(time_ns, transform)
        buffer = self._buffer
        if not self.has_samples or time_ns > buffer.times[self._end - 1]:
            if self._end != len(buffer.times):
                # Another version already appended past our end.
                self._rebuild()
                buffer = self._buffer
            buffer.times.append(time_ns)
            buffer.samples.append(sample)
            self._end += 1
        else:
            times = buffer.times[self._start:self._end]
            samples = buffer.samples[self._start:self._end]
            index = bisect_left(times, time_ns)
            if times[index] == time_ns:
                samples[index] = sample
            else:
                times.insert(index, time_ns)
                samples.insert(index, sample)
            self._install(_SampleBuffer(times, samples))
        self._prune()

    def _rebuild(self) -> None:
        """Move the live window into a private buffer."""
        buffer = self._buffer
        self._install(_SampleBuffer(buffer.times[self._start:self._end], buffer.samples[self._start:self._end]))

    def _install(self, buffer: _SampleBuffer) -> None:
        self._buffer = buffer
        self._start = 0
        self._end = len(buffer.times)

    def _prune(self) -> None:
        """Drop samples that are too old or over capacity. The newest sample is always kept."""
        times = self._buffer.times
        count = self._end - self._start
        expired = bisect_left(times, times[self._end - 1] - self._max_storage_ns, self._start, self._end) - self._start
        overflow = count - self._max_capacity
        drop = min(max(expired, overflow), count - 1)
        if drop > 0:
            self._start += drop
        # Once the dead prefix outgrows the live window, copy the window out so the buffer does not grow forever.
        # Each copy is paid for by at least as many appends since the last one.
        if self._start > 0 and self._start >= self._end - self._start:
            self._rebuild()

    def sample_at(self, time_ns: int, max_extrapolation_ns: int) -> Union[Transform, LookupFailure]:
        """Return this frame's transform relative to its parent at `time_ns`.

        Between two recorded samples the result is interpolated. Outside the recorded range the nearest sample is held,
        as long as it is no more than `max_extrapolation_ns` away.

        Returns:
            A `Transform`, or `EmptyFrame` / `SampleUnavailable`.
        """
        if not self.has_samples:
            return EmptyFrame(self._id)
        times = self._buffer.times
        samples = self._buffer.samples
        first, last = self._start, self._end - 1
        index = bisect_left(times, time_ns, first, self._end)
        if index <= last and times[index] == time_ns:
            return samples[index].transform
        if index == first or index > last:
            nearest = samples[first] if index == first else samples[last]
            if abs(nearest.time_ns - time_ns) <= max_extrapolation_ns:
                return nearest.transform
            return SampleUnavailable(self._id, time_ns, max_extrapolation_ns, times[first], times[last])
        before = samples[index - 1]
        after = samples[index]
        alpha = (time_ns - before.time_ns) / (after.time_ns - before.time_ns)
        return before.transform.interpolate(after.transform, alpha)

    def root(self, frames: Mapping[str, "CoordinateFrame"]) -> "CoordinateFrame":
        """Follow parent handles through `frames` to the frame with no parent.

        Raises:
            FrameCycleError: If the walk is longer than the number of frames, i.e. the parents form a loop.
        """
        frame = self
        for _ in range(len(frames) + 1):
            if frame.parent_id is None or frame.parent_id not in frames:
                return frame
            frame = frames[frame.parent_id]
        raise FrameCycleError(f"Parent links from '{self._id}' form a cycle.")

    def copy(self) -> "CoordinateFrame":
        """A writable O(1) copy sharing this frame's sample buffer."""
        clone = CoordinateFrame(self._id, self._parent_id,
                                max_storage_ns=self._max_storage_ns, max_capacity=self._max_capacity)
        clone._buffer = self._buffer
        clone._start = self._start
        clone._end = self._end
        return clone

    def __str__(self) -> str:
        return f"CoordinateFrame(id={self._id!r}, parent={self._parent_id!r}, samples={len(self)})"
    __repr__ = __str__
