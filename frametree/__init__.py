"""
`frametree` resolves poses between named coordinate frames linked by time-varying rigid transforms.

Producers report parent-to-child transforms with `TransformTree.add_transform`. Consumers ask the tree to carry a
`Pose` from one frame at one time to another frame at another time with `TransformTree.apply`. Lookups that cannot be
answered yet return a falsy `LookupFailure` instead of raising.
"""

from frametree.config import TreeConfig, config_from_mapping, validate_config
from frametree.failures import (EmptyFrame, FrameCycleError, LookupFailure, NoCommonAncestor, ReadOnlyFrameError,
                                SampleUnavailable, TransformLookupError, UnknownFrame)
from frametree.frame import CoordinateFrame, TimedSample
from frametree.policy import FixedFrameSelector, PinnedFixedFrame, RootOfFrame, RootWithMostSamples
from frametree.timeutil import ns_to_seconds, seconds_to_ns, stamp_to_ns
from frametree.transform import Pose, Transform, apply, compose, interpolate, invert
from frametree.tree import TransformTree, TransformUpdate

__all__ = [
    "CoordinateFrame",
    "EmptyFrame",
    "FixedFrameSelector",
    "FrameCycleError",
    "LookupFailure",
    "NoCommonAncestor",
    "PinnedFixedFrame",
    "Pose",
    "ReadOnlyFrameError",
    "RootOfFrame",
    "RootWithMostSamples",
    "SampleUnavailable",
    "TimedSample",
    "Transform",
    "TransformLookupError",
    "TransformTree",
    "TransformUpdate",
    "TreeConfig",
    "UnknownFrame",
    "apply",
    "compose",
    "config_from_mapping",
    "interpolate",
    "invert",
    "ns_to_seconds",
    "seconds_to_ns",
    "stamp_to_ns",
    "validate_config",
]
