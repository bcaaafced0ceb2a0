"""Conversions between wire-style timestamps and the integer nanoseconds used everywhere in the tree."""

NANOS_PER_SECOND = 1_000_000_000


def stamp_to_ns(sec: int, nsec: int) -> int:
    """Collapse a (sec, nsec) stamp, as found in ROS headers, into nanoseconds."""
    return int(sec) * NANOS_PER_SECOND + int(nsec)


def seconds_to_ns(seconds: float) -> int:
    return int(round(seconds * NANOS_PER_SECOND))


def ns_to_seconds(time_ns: int) -> float:
    return time_ns / NANOS_PER_SECOND
