"""Ways of choosing the fixed frame for a query.

Which frame is "fixed enough" to bridge two timestamps depends on the application, so the tree does not pick one. The
host passes either a frame name or one of these selectors to `TransformTree.apply`. Selectors are plain objects with no
global state; keep one around and reuse it.
"""

from abc import ABC, abstractmethod
from typing import Mapping, Optional

from frametree.frame import CoordinateFrame


class FixedFrameSelector(ABC):
    """Picks the fixed frame for a query from `src_frame` to `dst_frame`."""

    @abstractmethod
    def select(self, frames: Mapping[str, CoordinateFrame], dst_frame: str, src_frame: str) -> Optional[str]:
        """Return the name of the fixed frame, or None if no suitable frame exists.

        Args:
            frames: The frame map the query runs against, as returned by `TransformTree.frames()`.
            dst_frame: The destination frame of the query.
            src_frame: The source frame of the query.
        """


class PinnedFixedFrame(FixedFrameSelector):
    """Always use one named frame, e.g. a frame the user picked in a settings panel."""

    def __init__(self, frame_id: str) -> None:
        self.frame_id = frame_id

    def select(self, frames: Mapping[str, CoordinateFrame], dst_frame: str, src_frame: str) -> Optional[str]:
        return self.frame_id

    def __repr__(self) -> str:
        return f"PinnedFixedFrame({self.frame_id!r})"


class RootOfFrame(FixedFrameSelector):
    """Use the root of a frame's current ancestry.

    With no `frame_id`, the root of the destination frame is used, which suits the common case of everything hanging
    off a single world or map frame.
    """

    def __init__(self, frame_id: Optional[str] = None) -> None:
        self.frame_id = frame_id

    def select(self, frames: Mapping[str, CoordinateFrame], dst_frame: str, src_frame: str) -> Optional[str]:
        frame = frames.get(self.frame_id if self.frame_id is not None else dst_frame)
        return frame.root(frames).id if frame is not None else None

    def __repr__(self) -> str:
        return f"RootOfFrame({self.frame_id!r})"


class RootWithMostSamples(FixedFrameSelector):
    """Use the root of whichever frame currently holds the most samples.

    The busiest frame is usually the one being driven by odometry or localization, so its root is a good guess for
    the world frame. Ties go to the alphabetically first frame name so the choice does not depend on insertion order.
    """

    def select(self, frames: Mapping[str, CoordinateFrame], dst_frame: str, src_frame: str) -> Optional[str]:
        if not frames:
            return None
        busiest = min(frames.values(), key=lambda frame: (-len(frame), frame.id))
        return busiest.root(frames).id

    def __repr__(self) -> str:
        return "RootWithMostSamples()"
