"""
The transform tree: every known frame, and the algorithm that carries a pose from one frame and time to another.

Producers feed it with `add_transform` as messages arrive. Consumers call `apply` to resolve poses, typically once per
render tick for every object they own:

```python
tree = TransformTree()
tree.add_transform("base", "world", t, world_t_base)
tree.add_transform("sensor", "base", t, base_t_sensor)

pose_in_world = tree.apply("world", Pose.identity(), "sensor", t, t, "world", max_extrapolation_ns=0)
if not pose_in_world:
    ...  # a LookupFailure: skip this object for now
```

Time is always an integer number of nanoseconds.

One thread writes and any number of threads read. Writers are serialized by a lock and never modify a published frame:
each `add_transform` makes an O(1) copy of the frame it touches, which shares the sample buffer of the published
version, and publishes a new frame map with a single reference swap. Published frames are frozen. A query reads the
map reference once at the start and works against that view only, so it never sees a frame re-parented without its
new sample, and `clone()` is a free, stable snapshot.
"""

import logging
import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple, Union

from frametree.config import TreeConfig, validate_config
from frametree.failures import (EmptyFrame, FrameCycleError, LookupFailure, NoCommonAncestor, UnknownFrame)
from frametree.frame import CoordinateFrame
from frametree.policy import FixedFrameSelector
from frametree.transform import Pose, Transform

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransformUpdate:
    """What an `add_transform` call changed, for observers that keep derived state."""
    child_id: str
    parent_id: str
    time_ns: int
    new_frames: Tuple[str, ...] = ()
    previous_parent_id: Optional[str] = None
    reparented: bool = False

    @property
    def topology_changed(self) -> bool:
        return bool(self.new_frames) or self.previous_parent_id != self.parent_id


class TransformTree(object):
    """A registry of coordinate frames, created on demand as transforms arrive."""

    def __init__(self, config: Optional[TreeConfig] = None) -> None:
        self._config = config if config is not None else TreeConfig()
        validate_config(self._config)
        self._frames: Dict[str, CoordinateFrame] = {}
        self._write_lock = threading.Lock()

    @property
    def config(self) -> TreeConfig:
        return self._config

    def add_transform(self, child_id: str, parent_id: str, time_ns: int, transform: Transform) -> TransformUpdate:
        """Record `transform` as the pose of `child_id` relative to `parent_id` at `time_ns`.

        Frames that have never been seen are created. If `child_id` currently has a different parent it is re-parented
        first; earlier samples stay relative to the old parent.

        Returns:
            A `TransformUpdate` naming any frames created and whether the child was re-parented.

        Raises:
            FrameCycleError: If `parent_id` is `child_id` or one of its descendants.
        """
        time_ns = int(time_ns)
        with self._write_lock:
            frames = self._frames
            if child_id == parent_id:
                raise FrameCycleError(f"Frame '{child_id}' cannot be its own parent.")
            current = frames.get(child_id)
            if current is not None and current.parent_id != parent_id and parent_id in frames:
                if child_id in self._ancestors(frames, parent_id):
                    raise FrameCycleError(
                        f"Making '{parent_id}' the parent of '{child_id}' would create a cycle.")

            updated = dict(frames)
            new_frames: List[str] = []
            for frame_id in (child_id, parent_id):
                if frame_id not in updated:
                    updated[frame_id] = self._new_frame(frame_id)
                    new_frames.append(frame_id)

            child = updated[child_id].copy()
            previous_parent_id = child.parent_id
            reparented = previous_parent_id is not None and previous_parent_id != parent_id
            child.set_parent(parent_id)
            child.add_sample(time_ns, transform)
            updated[child_id] = child
            for frame_id in new_frames:
                updated[frame_id].freeze()
            child.freeze()

            self._frames = updated

        for frame_id in new_frames:
            logger.debug("Added frame '%s'.", frame_id)
        if reparented:
            logger.debug("Re-parented frame '%s' from '%s' to '%s' at %d.",
                         child_id, previous_parent_id, parent_id, time_ns)
        return TransformUpdate(child_id, parent_id, time_ns, tuple(new_frames), previous_parent_id, reparented)

    def _new_frame(self, frame_id: str) -> CoordinateFrame:
        return CoordinateFrame(frame_id, max_storage_ns=self._config.max_storage_ns,
                               max_capacity=self._config.max_capacity)

    @staticmethod
    def _ancestors(frames: Mapping[str, CoordinateFrame], frame_id: str) -> List[str]:
        """`frame_id` followed by each of its ancestors, nearest first."""
        chain = [frame_id]
        frame = frames[frame_id]
        while frame.parent_id is not None:
            if len(chain) > len(frames):
                raise FrameCycleError(f"Parent links from '{frame_id}' form a cycle.")
            chain.append(frame.parent_id)
            frame = frames[frame.parent_id]
        return chain

    def has_frame(self, frame_id: str) -> bool:
        return frame_id in self._frames

    __contains__ = has_frame

    def __len__(self) -> int:
        return len(self._frames)

    def frame(self, frame_id: str) -> Optional[CoordinateFrame]:
        """Return the named frame, or None. The frame is read-only; `copy()` it to experiment."""
        return self._frames.get(frame_id)

    def frames(self) -> Mapping[str, CoordinateFrame]:
        """A read-only view of the current frame map."""
        return MappingProxyType(self._frames)

    def all_frame_names(self) -> List[str]:
        """A snapshot of every registered frame name. The order carries no meaning."""
        return list(self._frames)

    def root(self, frame_id: str) -> Optional[CoordinateFrame]:
        """The root of the named frame's current ancestry, or None if the frame is unknown."""
        frames = self._frames
        frame = frames.get(frame_id)
        return frame.root(frames) if frame is not None else None

    def clone(self) -> "TransformTree":
        """Return a snapshot that shares the current frame map.

        Later writes to this tree do not show through, since published frames are never modified. Writes to the
        snapshot likewise stay in the snapshot.
        """
        snapshot = TransformTree(self._config)
        snapshot._frames = self._frames
        return snapshot

    def lookup_transform(self, dst_frame: str, src_frame: str, dst_time_ns: int, src_time_ns: int,
                         fixed_frame: Union[str, FixedFrameSelector],
                         max_extrapolation_ns: Optional[int] = None) -> Union[Transform, LookupFailure]:
        """Return the transform taking coordinates in `src_frame` at `src_time_ns` to `dst_frame` at `dst_time_ns`.

        `fixed_frame` bridges the two times: both frames are walked up to it, each at its own time, and it is assumed
        not to move in between. It must be an ancestor of (or equal to) both frames.

        Args:
            dst_frame: The frame to express the result in.
            src_frame: The frame the input is expressed in.
            dst_time_ns: The time at which `dst_frame` is evaluated.
            src_time_ns: The time at which `src_frame` is evaluated.
            fixed_frame: A frame name, or a `FixedFrameSelector` that picks one.
            max_extrapolation_ns: How far outside a frame's recorded samples a query may reach. Defaults to the tree
                config.

        Returns:
            `dst_t_src`, or a `LookupFailure` saying why it could not be resolved.
        """
        return self._lookup(self._frames, dst_frame, src_frame, dst_time_ns, src_time_ns, fixed_frame,
                            max_extrapolation_ns)

    def apply(self, dst_frame: str, pose: Pose, src_frame: str, dst_time_ns: int, src_time_ns: int,
              fixed_frame: Union[str, FixedFrameSelector],
              max_extrapolation_ns: Optional[int] = None) -> Union[Pose, LookupFailure]:
        """Re-express `pose`, given in `src_frame` at `src_time_ns`, in `dst_frame` at `dst_time_ns`.

        See `lookup_transform` for the arguments. When source and destination are the same frame at the same time,
        `pose` itself is returned.

        Returns:
            The pose in `dst_frame`, or a `LookupFailure`.
        """
        frames = self._frames
        for frame_id in (src_frame, dst_frame):
            if frame_id not in frames:
                return UnknownFrame(frame_id)
        if src_frame == dst_frame and src_time_ns == dst_time_ns:
            return pose
        dst_t_src = self._lookup(frames, dst_frame, src_frame, dst_time_ns, src_time_ns, fixed_frame,
                                 max_extrapolation_ns)
        if isinstance(dst_t_src, LookupFailure):
            return dst_t_src
        return dst_t_src.apply(pose)

    def _lookup(self, frames: Dict[str, CoordinateFrame], dst_frame: str, src_frame: str, dst_time_ns: int,
                src_time_ns: int, fixed_frame: Union[str, FixedFrameSelector],
                max_extrapolation_ns: Optional[int]) -> Union[Transform, LookupFailure]:
        for frame_id in (src_frame, dst_frame):
            if frame_id not in frames:
                return UnknownFrame(frame_id)
        if src_frame == dst_frame and src_time_ns == dst_time_ns:
            return Transform.identity()
        if isinstance(fixed_frame, FixedFrameSelector):
            fixed_frame = fixed_frame.select(MappingProxyType(frames), dst_frame, src_frame)
        if fixed_frame is None or fixed_frame not in frames:
            return UnknownFrame(fixed_frame)
        if max_extrapolation_ns is None:
            max_extrapolation_ns = self._config.max_extrapolation_ns

        fixed_t_src = self._walk_to(frames, src_frame, fixed_frame, int(src_time_ns), max_extrapolation_ns)
        if isinstance(fixed_t_src, LookupFailure):
            return fixed_t_src
        fixed_t_dst = self._walk_to(frames, dst_frame, fixed_frame, int(dst_time_ns), max_extrapolation_ns)
        if isinstance(fixed_t_dst, LookupFailure):
            return fixed_t_dst
        return fixed_t_dst.inverse * fixed_t_src

    @staticmethod
    def _walk_to(frames: Mapping[str, CoordinateFrame], start: str, fixed_frame: str, time_ns: int,
                 max_extrapolation_ns: int) -> Union[Transform, LookupFailure]:
        """Compose the per-link transforms from `start` up to `fixed_frame`, each sampled at `time_ns`."""
        frame_t_start = Transform.identity()
        frame = frames[start]
        for _ in range(len(frames) + 1):
            if frame.id == fixed_frame:
                return frame_t_start
            if frame.parent_id is None:
                if frame.id == start and not frame.has_samples:
                    return EmptyFrame(start)
                return NoCommonAncestor(start, fixed_frame)
            parent_t_frame = frame.sample_at(time_ns, max_extrapolation_ns)
            if isinstance(parent_t_frame, LookupFailure):
                return parent_t_frame
            frame_t_start = parent_t_frame * frame_t_start
            frame = frames[frame.parent_id]
        raise FrameCycleError(f"Parent links from '{start}' form a cycle.")
