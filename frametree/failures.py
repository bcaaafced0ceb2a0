"""Outcomes of a lookup that could not be answered.

Missing data is normal operation for a transform tree: a frame has not been published yet, a sensor is lagging, or the
caller picked a fixed frame that one side cannot reach. These are returned as values, never raised, so a renderer can
skip an object for one tick without a try/except around every query. Every failure is falsy:

```python
pose = tree.apply("world", Pose.identity(), "sensor", t, t, "world", max_extrapolation_ns=0)
if not pose:
    return  # unpositionable this tick
```
"""

from dataclasses import dataclass
from typing import Optional


class FrameCycleError(ValueError):
    """Raised when following parent links would loop forever, or a new link would close a loop."""


class ReadOnlyFrameError(ValueError):
    """Raised when a frame that a tree has published is modified in place."""


class TransformLookupError(LookupError):
    """Exception form of a `LookupFailure`, for callers that prefer raising."""

    def __init__(self, failure: "LookupFailure") -> None:
        super().__init__(failure.message)
        self.failure = failure


@dataclass(frozen=True)
class LookupFailure:
    """Base class of every "not found" outcome."""

    def __bool__(self) -> bool:
        return False

    @property
    def message(self) -> str:
        return type(self).__name__

    def as_error(self) -> TransformLookupError:
        return TransformLookupError(self)


@dataclass(frozen=True)
class UnknownFrame(LookupFailure):
    frame_id: Optional[str]

    @property
    def message(self) -> str:
        return f"Frame '{self.frame_id}' is not in the tree."


@dataclass(frozen=True)
class NoCommonAncestor(LookupFailure):
    frame_id: str
    fixed_frame: str

    @property
    def message(self) -> str:
        return f"Fixed frame '{self.fixed_frame}' is not an ancestor of '{self.frame_id}'."


@dataclass(frozen=True)
class SampleUnavailable(LookupFailure):
    frame_id: str
    time_ns: int
    max_extrapolation_ns: int
    earliest_ns: int
    latest_ns: int

    @property
    def message(self) -> str:
        return (f"No sample for '{self.frame_id}' within {self.max_extrapolation_ns} ns of {self.time_ns} "
                f"(recorded range [{self.earliest_ns}, {self.latest_ns}]).")


@dataclass(frozen=True)
class EmptyFrame(LookupFailure):
    frame_id: str

    @property
    def message(self) -> str:
        return f"Frame '{self.frame_id}' has no recorded samples."
