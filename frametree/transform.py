"""
Rigid transform algebra for `frametree`.

A `Transform` is an immutable rigid motion (a translation plus a unit rotation). It is the verb of this library: the
tree stores one `Transform` per recorded sample, meaning "this frame relative to its parent", and composes, inverts and
interpolates them to answer queries.

A `Pose` is the noun: a position and orientation. It is what callers hand to `TransformTree.apply` and what they get
back. Semantically a pose is a transform applied to the identity pose, but it is kept as its own type so that the
public query shape does not depend on the internal algebra.

Quaternions on the boundary are in xyzw order, as in `scipy.spatial.transform.Rotation`.
"""

import logging

import numpy as np
from typing import Sequence, Union
from scipy.spatial.transform import Rotation, Slerp

logger = logging.getLogger(__name__)

_IDENTITY_QUAT = np.array([0.0, 0.0, 0.0, 1.0])


def _normalized_quat(quaternion: Sequence[float]) -> np.ndarray:
    """Return `quaternion` scaled to unit length, or the identity if it cannot be normalized.

    A zero-length or non-finite quaternion is a malformed input from a producer. Rather than failing every query that
    touches it, it is replaced by the identity rotation.
    """
    q = np.asarray(quaternion, dtype=np.float64).reshape(4)
    norm = float(np.linalg.norm(q))
    if not np.isfinite(norm) or norm < 1e-12:
        logger.warning("Quaternion %s cannot be normalized, using the identity rotation.", q)
        return _IDENTITY_QUAT.copy()
    return q / norm


def _read_only(array: np.ndarray) -> np.ndarray:
    """A read-only view of `array`. The owner keeps a writable buffer because `Rotation.apply` rejects read-only input."""
    view = array.view()
    view.flags.writeable = False
    return view


def _renormalized(rotation: Rotation) -> Rotation:
    """Rebuild a rotation from its quaternion so drift from repeated products does not accumulate."""
    return Rotation.from_quat(_normalized_quat(rotation.as_quat()))


class Transform(object):
    """A rigid transform from a frame to another location and rotation.

    Transforms are immutable. `a * b` means "apply `b`, then `a`", so a chain of parent-from-child transforms reads
    left to right from the outermost frame: `world_t_sensor = world_t_base * base_t_sensor`.
    """

    def __init__(self, position: Sequence[float], rotation: Rotation) -> None:
        """Create a transform from a position and rotation.

        Args:
            position: The position of the transform.
            rotation: The rotation of the transform.
        """
        self._position = np.array(position, dtype=np.float64).reshape(3)
        self._rotation = rotation

    @classmethod
    def from_position_and_quaternion(cls, position: Sequence[float], quaternion: Sequence[float]) -> "Transform":
        """Create a transform from a position and quaternion.

        A quaternion that is not unit length is normalized. A zero quaternion becomes the identity rotation.

        Args:
            position: The position of the transform.
            quaternion: The quaternion of the transform, in xyzw order.

        Returns:
            A new transform.
        """
        return cls(position, Rotation.from_quat(_normalized_quat(quaternion)))

    @classmethod
    def identity(cls) -> "Transform":
        """Return the identity transform."""
        return cls(np.zeros(3), Rotation.identity())

    @property
    def inverse(self) -> "Transform":
        """The inverse of the transform.

        t1 * t1.inverse == Transform.identity()
        """
        inverse_rotation = _renormalized(self.rotation.inv())
        return Transform(-inverse_rotation.apply(self._position), inverse_rotation)

    @property
    def position(self) -> np.ndarray:
        """The 1x3 cartesian position of the transform."""
        return _read_only(self._position)

    @property
    def rotation(self) -> Rotation:
        """The rotation component of the transform."""
        return self._rotation

    @property
    def quaternion(self) -> np.ndarray:
        """The rotation as a unit quaternion in xyzw order."""
        return self._rotation.as_quat()

    @property
    def x(self) -> float:
        """The x coordinate of the transform."""
        return self.position[0]

    @property
    def y(self) -> float:
        """The y coordinate of the transform."""
        return self.position[1]

    @property
    def z(self) -> float:
        """The z coordinate of the transform."""
        return self.position[2]

    def to_matrix(self) -> np.ndarray:
        """Return the 4x4 matrix representation of the transform."""
        matrix = np.eye(4)
        matrix[:3, :3] = self.rotation.as_matrix()
        matrix[:3, 3] = self.position
        return matrix

    @classmethod
    def from_matrix(cls, matrix: Sequence[Sequence[float]]) -> "Transform":
        """Create a transform from a 4x4 homogeneous matrix."""
        matrix = np.array(matrix)
        return cls(matrix[:3, 3], Rotation.from_matrix(matrix[:3, :3]))

    def apply(self, other: Union["Transform", "Pose", Sequence[float]]) -> Union["Transform", "Pose", np.ndarray]:
        """Multiply this transform by a transform, a pose or a vector.

        If other is a transform, the result applies `other` first, then this transform.
        If other is a pose, the result is that pose moved by this rigid motion.
        If other is a vector, the result is the vector transformed by this rigid motion.

        Args:
            other: The transform, pose or vector to transform.

        Returns:
            A value of the same kind as `other`.
        """
        if isinstance(other, Transform):
            return Transform(
                self._position + self.rotation.apply(other._position),
                _renormalized(self.rotation * other.rotation))
        if isinstance(other, Pose):
            return Pose.from_transform(self.apply(other.as_transform()))
        other = np.array(other, dtype=np.float64)
        return self._position + self.rotation.apply(other)

    __mul__ = apply

    def almost_equal(self, other: "Transform", atol: float = 1e-8) -> bool:
        """Check if two transforms are almost equal.

        Handles floating point error in the position and rotation, and the fact that for quaternions negating
        the vector gives the same rotation.
        """
        return _almost_equal(self.position, self.quaternion, other.position, other.quaternion, atol)

    def interpolate(self, other: "Transform", alpha: float) -> "Transform":
        """Interpolate between two transforms.

        Translation is interpolated linearly and rotation spherically, along the shortest arc.

        Args:
            other: The other transform to interpolate with.
            alpha: The interpolation factor, clamped to [0, 1]. 0 gives this transform, 1 gives the other transform.

        Returns:
            The interpolated transform.
        """
        alpha = min(max(float(alpha), 0.0), 1.0)
        if alpha == 0.0:
            return self
        if alpha == 1.0:
            return other
        q0 = self.quaternion
        q1 = other.quaternion
        # q and -q are the same orientation; flip so slerp takes the short way round.
        if np.dot(q0, q1) < 0.0:
            q1 = -q1
        slerp = Slerp([0, 1], Rotation.from_quat(np.vstack((q0, q1))))
        new_rotation = _renormalized(slerp([alpha])[0])
        return Transform(self.position * (1 - alpha) + other.position * alpha, new_rotation)

    def angle_to(self, target: "Transform") -> float:
        """Return the angle in radians between two transforms' orientations. Ignores position."""
        relative_rotation = self.rotation.inv() * target.rotation
        return float(np.linalg.norm(relative_rotation.as_rotvec()))

    def __eq__(self, other: object) -> bool:
        """Check if two transforms are exactly equal."""
        if not isinstance(other, Transform):
            return NotImplemented
        return self.almost_equal(other, atol=0)

    def __str__(self) -> str:
        return f"Transform(position={self.position}, rotation={self.quaternion})"
    __repr__ = __str__


class Pose(object):
    """An immutable position and orientation.

    Unlike a `Transform`, a pose does not say anything about how to get somewhere; it is just the thing being located.
    Which frame it is expressed in is carried by the caller, e.g. the `src_frame` argument of `TransformTree.apply`.
    """

    def __init__(self, position: Sequence[float], rotation: Rotation) -> None:
        self._position = np.array(position, dtype=np.float64).reshape(3)
        self._rotation = rotation

    @classmethod
    def identity(cls) -> "Pose":
        """The pose at the origin with no rotation."""
        return cls(np.zeros(3), Rotation.identity())

    @classmethod
    def from_position_and_quaternion(cls, position: Sequence[float], quaternion: Sequence[float]) -> "Pose":
        """Create a pose from a position and an xyzw quaternion."""
        return cls(position, Rotation.from_quat(_normalized_quat(quaternion)))

    @classmethod
    def from_transform(cls, transform: Transform) -> "Pose":
        """The pose reached by applying `transform` to the identity pose."""
        return cls(transform.position, transform.rotation)

    def as_transform(self) -> Transform:
        """The transform that moves the identity pose onto this pose."""
        return Transform(self._position, self._rotation)

    @property
    def position(self) -> np.ndarray:
        return _read_only(self._position)

    @property
    def rotation(self) -> Rotation:
        return self._rotation

    @property
    def quaternion(self) -> np.ndarray:
        """The orientation as a unit quaternion in xyzw order."""
        return self._rotation.as_quat()

    @property
    def x(self) -> float:
        return self._position[0]

    @property
    def y(self) -> float:
        return self._position[1]

    @property
    def z(self) -> float:
        return self._position[2]

    def almost_equal(self, other: "Pose", atol: float = 1e-8) -> bool:
        """Check if two poses are almost equal, treating q and -q as the same orientation."""
        return _almost_equal(self.position, self.quaternion, other.position, other.quaternion, atol)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Pose):
            return NotImplemented
        return self.almost_equal(other, atol=0)

    def __str__(self) -> str:
        return f"Pose(position={self.position}, orientation={self.quaternion})"
    __repr__ = __str__


def _almost_equal(p0: np.ndarray, q0: np.ndarray, p1: np.ndarray, q1: np.ndarray, atol: float) -> bool:
    if not np.allclose(p0, p1, rtol=0, atol=atol):
        return False
    # [x, y, z, w] and [-x, -y, -z, -w] are the same rotation.
    return np.allclose(q0, q1, rtol=0, atol=atol) or np.allclose(q0, -q1, rtol=0, atol=atol)


def compose(a: Transform, b: Transform) -> Transform:
    """The transform equivalent to applying `b`, then `a`."""
    return a * b


def invert(a: Transform) -> Transform:
    """The exact inverse rigid motion of `a`."""
    return a.inverse


def interpolate(a: Transform, b: Transform, alpha: float) -> Transform:
    """Interpolate from `a` (alpha=0) to `b` (alpha=1)."""
    return a.interpolate(b, alpha)


def apply(transform: Transform, pose: Pose) -> Pose:
    """Move `pose` by the rigid motion `transform`."""
    return transform.apply(pose)
