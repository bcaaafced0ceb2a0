import threading

import numpy as np
import pytest
from frametree import (EmptyFrame, FrameCycleError, NoCommonAncestor, Pose, ReadOnlyFrameError, SampleUnavailable,
                       Transform, TransformLookupError, TransformTree, TreeConfig, UnknownFrame)
from scipy.spatial.transform import Rotation


def test_sensor_base_world():
    tree = TransformTree()
    tree.add_transform("sensor", "base", 1000, Transform([1, 0, 0], Rotation.identity()))
    tree.add_transform("base", "world", 1000, Transform([0, 2, 0], Rotation.identity()))

    pose = tree.apply("world", Pose.identity(), "sensor", 1000, 1000, "world", max_extrapolation_ns=0)

    assert np.allclose(pose.position, [1, 2, 0])
    assert np.allclose(pose.quaternion, [0, 0, 0, 1])


def test_add_transform_reports_new_frames():
    tree = TransformTree()

    update = tree.add_transform("sensor", "base", 0, Transform.identity())
    assert update.new_frames == ("sensor", "base")
    assert update.topology_changed

    update = tree.add_transform("base", "world", 0, Transform.identity())
    assert update.new_frames == ("world",)
    assert not update.reparented

    update = tree.add_transform("sensor", "base", 10, Transform.identity())
    assert update.new_frames == ()
    assert not update.topology_changed
    assert sorted(tree.all_frame_names()) == ["base", "sensor", "world"]


def test_frame_queries():
    tree = TransformTree()
    tree.add_transform("child", "parent", 0, Transform.identity())

    assert tree.has_frame("child")
    assert "parent" in tree
    assert not tree.has_frame("Child")
    assert tree.frame("child").parent_id == "parent"
    assert tree.frame("parent").parent_id is None
    assert tree.frame("missing") is None
    assert len(tree) == 2
    assert tree.root("child").id == "parent"
    assert tree.root("missing") is None


def test_identity_round_trip_is_exact():
    tree = TransformTree()
    tree.add_transform("camera", "base", 0, Transform([1, 2, 3], Rotation.from_euler('xyz', [1, 2, 3])))
    pose = Pose([0.1, 0.2, 0.3], Rotation.from_euler('xyz', [10, 20, 30], degrees=True))

    for frame in ["camera", "base"]:
        assert tree.apply(frame, pose, frame, 12345, 12345, frame, max_extrapolation_ns=0) == pose


def test_single_hop():
    tree = TransformTree()
    known_transform = Transform([1, 2, 3], Rotation.from_euler('xyz', [0.1, 0.2, 0.3], degrees=True))
    tree.add_transform("child", "root", 0, known_transform)

    assert tree.lookup_transform("root", "child", 0, 0, "root").almost_equal(known_transform)
    assert tree.lookup_transform("child", "root", 0, 0, "root").almost_equal(known_transform.inverse)


def test_chain_matches_direct_composition():
    tree = TransformTree()
    b_t_a = Transform([1, 0, 0], Rotation.from_euler('xyz', [0, 0, 90], degrees=True))
    c_t_b = Transform([10, 0, 0], Rotation.from_euler('xyz', [0, 30, 0], degrees=True))
    tree.add_transform("A", "B", 0, b_t_a)
    tree.add_transform("B", "C", 0, c_t_b)
    pose = Pose([0.5, -1, 2], Rotation.from_euler('xyz', [5, 0, 0], degrees=True))

    result = tree.apply("C", pose, "A", 0, 0, "C")

    assert result.almost_equal((c_t_b * b_t_a).apply(pose))


def test_siblings():
    tree = TransformTree()
    tree.add_transform("child1", "root", 0, Transform([1, 0, 0], Rotation.from_euler('xyz', [0, 0, 90], degrees=True)))
    tree.add_transform("child2", "root", 0, Transform([10, 0, 0], Rotation.from_euler('xyz', [0, 0, 90], degrees=True)))

    expected_transform = Transform([0, -9, 0], Rotation.identity())
    assert tree.lookup_transform("child1", "child2", 0, 0, "root").almost_equal(expected_transform)
    assert tree.lookup_transform("child2", "child1", 0, 0, "root").almost_equal(expected_transform.inverse)


def test_complex_transforms():
    tree = TransformTree()
    parent_t_child1 = Transform.from_position_and_quaternion([1, 2, 3], [0, 0, np.sin(np.pi/4), np.cos(np.pi/4)])
    child1_t_child2 = Transform.from_position_and_quaternion([4, 5, 6], [0, np.sin(np.pi/6), 0, np.cos(np.pi/6)])
    parent_t_child3 = Transform.from_position_and_quaternion([7, 8, 9], [np.sin(np.pi/8), 0, 0, np.cos(np.pi/8)])
    child3_t_child4 = Transform.from_position_and_quaternion(
        [10, 11, 12], [np.sin(np.pi/10), 0, np.sin(np.pi/10), np.cos(np.pi/10)])

    tree.add_transform("child1", "parent", 0, parent_t_child1)
    tree.add_transform("child2", "child1", 0, child1_t_child2)
    tree.add_transform("child3", "parent", 0, parent_t_child3)
    tree.add_transform("child4", "child3", 0, child3_t_child4)

    child2_t_child4 = child1_t_child2.inverse * parent_t_child1.inverse * parent_t_child3 * child3_t_child4

    assert tree.lookup_transform("child2", "child4", 0, 0, "parent").almost_equal(child2_t_child4)
    assert tree.lookup_transform("child4", "child2", 0, 0, "parent").almost_equal(child2_t_child4.inverse)


def test_fixed_frame_bridges_two_times():
    tree = TransformTree()
    # The robot drives 1 m forward in x between t=0 and t=100, while its camera stays put on it.
    tree.add_transform("robot", "world", 0, Transform([0, 0, 0], Rotation.identity()))
    tree.add_transform("robot", "world", 100, Transform([1, 0, 0], Rotation.identity()))
    tree.add_transform("camera", "robot", 0, Transform([0, 0, 1], Rotation.identity()))

    seen_at_start = Pose([2, 0, 0], Rotation.identity())
    now = tree.apply("camera", seen_at_start, "camera", 100, 0, "world", max_extrapolation_ns=100)

    assert np.allclose(now.position, [1, 0, 0])


def test_time_between_samples_is_interpolated():
    tree = TransformTree()
    tree.add_transform("robot", "world", 0, Transform([0, 0, 0], Rotation.identity()))
    tree.add_transform("robot", "world", 100, Transform([4, 0, 0], Rotation.identity()))

    pose = tree.apply("world", Pose.identity(), "robot", 25, 25, "world")

    assert np.allclose(pose.position, [1, 0, 0])


def test_unknown_frames():
    tree = TransformTree()
    tree.add_transform("base", "world", 0, Transform.identity())

    assert tree.apply("world", Pose.identity(), "nope", 0, 0, "world") == UnknownFrame("nope")
    assert tree.apply("nope", Pose.identity(), "base", 0, 0, "world") == UnknownFrame("nope")
    assert tree.apply("world", Pose.identity(), "base", 0, 0, "nope") == UnknownFrame("nope")


def test_no_common_ancestor():
    tree = TransformTree()
    tree.add_transform("base", "world", 0, Transform.identity())
    tree.add_transform("odom", "map", 0, Transform.identity())

    result = tree.apply("odom", Pose.identity(), "base", 0, 0, "map")

    assert result == NoCommonAncestor("base", "map")
    assert not result


def test_fixed_frame_below_query_frame_is_not_an_ancestor():
    tree = TransformTree()
    tree.add_transform("sensor", "base", 0, Transform.identity())
    tree.add_transform("base", "world", 0, Transform.identity())

    assert tree.apply("sensor", Pose.identity(), "base", 0, 0, "sensor") == NoCommonAncestor("base", "sensor")


def test_frame_without_samples_is_empty():
    tree = TransformTree()
    tree.add_transform("sensor", "world", 0, Transform.identity())
    tree.add_transform("odom", "map", 0, Transform.identity())

    assert tree.apply("odom", Pose.identity(), "world", 0, 0, "map") == EmptyFrame("world")


def test_fixed_frame_side_has_empty_walk():
    tree = TransformTree()
    tree.add_transform("sensor", "world", 0, Transform([0, 0, 5], Rotation.identity()))

    pose = tree.apply("world", Pose.identity(), "sensor", 0, 0, "world")

    assert np.allclose(pose.position, [0, 0, 5])


def test_sample_beyond_extrapolation_is_unavailable():
    tree = TransformTree()
    tree.add_transform("sensor", "world", 1000, Transform([1, 0, 0], Rotation.identity()))

    result = tree.apply("world", Pose.identity(), "sensor", 1000, 5000, "world", max_extrapolation_ns=100)

    assert isinstance(result, SampleUnavailable)
    assert result.frame_id == "sensor"
    assert result.time_ns == 5000
    with pytest.raises(TransformLookupError):
        raise result.as_error()


def test_default_extrapolation_comes_from_config():
    tree = TransformTree(TreeConfig(max_extrapolation_ns=1000))
    tree.add_transform("sensor", "world", 1000, Transform([1, 0, 0], Rotation.identity()))

    assert tree.apply("world", Pose.identity(), "sensor", 2000, 2000, "world")
    assert not tree.apply("world", Pose.identity(), "sensor", 2001, 2001, "world")


def test_reparenting_changes_future_walks_only():
    tree = TransformTree()
    tree.add_transform("base", "world", 0, Transform([1, 0, 0], Rotation.identity()))
    tree.add_transform("map", "world", 0, Transform([0, 5, 0], Rotation.identity()))
    tree.add_transform("tool", "base", 0, Transform([0, 0, 1], Rotation.identity()))

    update = tree.add_transform("tool", "map", 10, Transform([0, 0, 2], Rotation.identity()))

    assert update.reparented
    assert update.previous_parent_id == "base"
    assert tree.frame("tool").parent_id == "map"
    assert tree.frame("tool").sample_at(0, 0).almost_equal(Transform([0, 0, 1], Rotation.identity()))
    pose = tree.apply("world", Pose.identity(), "tool", 10, 10, "world", max_extrapolation_ns=100)
    assert np.allclose(pose.position, [0, 5, 2])


def test_cycles_are_rejected():
    tree = TransformTree()
    tree.add_transform("b", "a", 0, Transform.identity())
    tree.add_transform("c", "b", 0, Transform.identity())

    with pytest.raises(FrameCycleError):
        tree.add_transform("a", "c", 0, Transform.identity())
    with pytest.raises(FrameCycleError):
        tree.add_transform("b", "b", 0, Transform.identity())

    assert tree.frame("a").parent_id is None
    assert len(tree.frame("a")) == 0


def test_snapshot_keeps_pre_reparent_topology():
    tree = TransformTree()
    tree.add_transform("base", "world", 0, Transform([1, 0, 0], Rotation.identity()))
    tree.add_transform("map", "world", 0, Transform([0, 5, 0], Rotation.identity()))
    tree.add_transform("tool", "base", 0, Transform([0, 0, 1], Rotation.identity()))

    snapshot = tree.clone()
    tree.add_transform("tool", "map", 0, Transform([0, 0, 2], Rotation.identity()))

    before = snapshot.apply("world", Pose.identity(), "tool", 0, 0, "world")
    after = tree.apply("world", Pose.identity(), "tool", 0, 0, "world")
    assert np.allclose(before.position, [1, 0, 1])
    assert np.allclose(after.position, [0, 5, 2])
    assert snapshot.frame("tool").parent_id == "base"


def test_snapshot_does_not_see_new_frames_or_samples():
    tree = TransformTree()
    tree.add_transform("base", "world", 0, Transform.identity())
    snapshot = tree.clone()

    tree.add_transform("base", "world", 10, Transform.identity())
    tree.add_transform("sensor", "base", 10, Transform.identity())

    assert len(snapshot.frame("base")) == 1
    assert not snapshot.has_frame("sensor")
    assert tree.has_frame("sensor")


def test_readers_see_consistent_frames_while_writer_reparents():
    tree = TransformTree()
    tree.add_transform("a", "world", 0, Transform([1, 0, 0], Rotation.identity()))
    tree.add_transform("b", "world", 0, Transform([0, 1, 0], Rotation.identity()))
    tree.add_transform("tool", "a", 0, Transform.identity())
    failures = []
    done = threading.Event()

    def read():
        while not done.is_set():
            pose = tree.apply("world", Pose.identity(), "tool", 0, 0, "world")
            if not pose or not (np.allclose(pose.position, [1, 0, 0]) or np.allclose(pose.position, [0, 1, 0])):
                failures.append(pose)

    readers = [threading.Thread(target=read) for _ in range(4)]
    for reader in readers:
        reader.start()
    for i in range(500):
        tree.add_transform("tool", "b" if i % 2 == 0 else "a", 0, Transform.identity())
    done.set()
    for reader in readers:
        reader.join()

    assert failures == []


def test_add_transform_appends_without_copying_history():
    tree = TransformTree()
    tree.add_transform("base", "world", 0, Transform.identity())
    first = tree.frame("base")

    for t in range(1, 5000):
        previous = tree.frame("base")
        tree.add_transform("base", "world", t, Transform([t, 0, 0], Rotation.identity()))
        assert tree.frame("base") is not previous
        assert tree.frame("base")._buffer is first._buffer

    assert len(tree.frame("base")) == 5000
    assert len(first) == 1
    assert first.sample_at(4999, 0) == SampleUnavailable("base", 4999, 0, 0, 0)


def test_snapshot_survives_out_of_order_and_duplicate_samples():
    tree = TransformTree()
    for t in [0, 10, 20]:
        tree.add_transform("base", "world", t, Transform([t, 0, 0], Rotation.identity()))
    snapshot = tree.clone()

    tree.add_transform("base", "world", 5, Transform([50, 0, 0], Rotation.identity()))
    tree.add_transform("base", "world", 20, Transform([99, 0, 0], Rotation.identity()))
    tree.add_transform("base", "world", 30, Transform([30, 0, 0], Rotation.identity()))

    assert [s.time_ns for s in snapshot.frame("base").samples] == [0, 10, 20]
    assert np.allclose(snapshot.apply("world", Pose.identity(), "base", 20, 20, "world").position, [20, 0, 0])
    assert [s.time_ns for s in tree.frame("base").samples] == [0, 5, 10, 20, 30]
    assert np.allclose(tree.apply("world", Pose.identity(), "base", 20, 20, "world").position, [99, 0, 0])


def test_published_frames_are_read_only():
    tree = TransformTree()
    tree.add_transform("sensor", "base", 0, Transform([1, 0, 0], Rotation.identity()))
    snapshot = tree.clone()

    with pytest.raises(ReadOnlyFrameError):
        tree.frame("sensor").add_sample(10, Transform([9, 9, 9], Rotation.identity()))
    with pytest.raises(ReadOnlyFrameError):
        tree.frame("sensor").set_parent("world")
    with pytest.raises(ReadOnlyFrameError):
        tree.frame("base").add_sample(0, Transform.identity())

    scratch = tree.frame("sensor").copy()
    scratch.add_sample(10, Transform([9, 9, 9], Rotation.identity()))
    scratch.set_parent("world")

    for view in (tree, snapshot):
        assert view.frame("sensor").parent_id == "base"
        assert len(view.frame("sensor")) == 1
        assert np.allclose(view.apply("base", Pose.identity(), "sensor", 0, 0, "base").position, [1, 0, 0])
