import math

import numpy as np
import pytest

from orbslam_core.descriptors import KeyPoint
from orbslam_core.map import Map
from orbslam_core.mappoint import MapPoint

SCALE = 1.2
LEVELS = 8


class FakeKeyFrame:
    def __init__(self, kf_id, center=(0.0, 0.0, 0.0), n=4, u_right=None, descriptors=None):
        self.id = kf_id
        self.frame_id = kf_id
        self.u_right = list(u_right) if u_right is not None else [-1.0] * n
        self.keys_un = [KeyPoint(0.0, 0.0, octave=0) for _ in range(n)]
        self.scale_factors = [SCALE**i for i in range(LEVELS)]
        self.n_scale_levels = LEVELS
        self.log_scale_factor = math.log(SCALE)
        self.descriptors = (
            np.asarray(descriptors, dtype=np.uint8)
            if descriptors is not None
            else np.zeros((n, 32), dtype=np.uint8)
        )
        self._center = np.array(center, dtype=float)
        self.bad = False
        self.erased = []
        self.replaced = []

    def camera_center(self):
        return self._center.copy()

    def is_bad(self):
        return self.bad

    def erase_map_point_match(self, index):
        self.erased.append(index)

    def replace_map_point_match(self, index, point):
        self.replaced.append((index, point))


class FakeFrame:
    def __init__(self, descriptors):
        self.id = 42
        self.keys_un = [KeyPoint(0.0, 0.0, octave=0) for _ in range(len(descriptors))]
        self.scale_factors = [SCALE**i for i in range(LEVELS)]
        self.n_scale_levels = LEVELS
        self.log_scale_factor = math.log(SCALE)
        self.descriptors = np.asarray(descriptors, dtype=np.uint8)

    def camera_center(self):
        return np.zeros(3)


@pytest.fixture
def world_map():
    return Map()


def test_ids_increase_and_reference(world_map):
    kf = FakeKeyFrame(3)
    a = MapPoint([0, 0, 1], kf, world_map)
    b = MapPoint([0, 0, 2], kf, world_map)
    assert b.id == a.id + 1
    assert a.first_kf_id == kf.id
    assert a.reference_keyframe() is kf


def test_world_pos_is_a_copy(world_map):
    p = MapPoint([1.0, 2.0, 3.0], FakeKeyFrame(0), world_map)
    pos = p.world_pos()
    pos[0] = 99.0
    assert np.allclose(p.world_pos(), [1.0, 2.0, 3.0])
    p.set_world_pos([4.0, 5.0, 6.0])
    assert np.allclose(p.world_pos(), [4.0, 5.0, 6.0])


def test_observation_counting(world_map):
    mono = FakeKeyFrame(1)
    stereo = FakeKeyFrame(2, u_right=[5.0] * 4)
    p = MapPoint([0, 0, 1], mono, world_map)
    p.add_observation(mono, 0)
    assert p.num_observations() == 1
    p.add_observation(stereo, 1)
    assert p.num_observations() == 3
    p.add_observation(mono, 2)
    assert p.num_observations() == 3
    assert p.observations() == {mono: 0, stereo: 1}
    assert p.is_in_keyframe(stereo)
    assert p.index_in_keyframe(stereo) == 1
    assert p.index_in_keyframe(FakeKeyFrame(9)) == -1


def test_erase_observation_turns_bad(world_map):
    kfs = [FakeKeyFrame(i) for i in range(3)]
    p = MapPoint([0, 0, 1], kfs[0], world_map)
    world_map.add_map_point(p)
    for i, kf in enumerate(kfs):
        p.add_observation(kf, i)
    p.erase_observation(kfs[0])
    assert p.reference_keyframe() is kfs[1]
    assert p.is_bad()
    assert kfs[1].erased == [1]
    assert kfs[2].erased == [2]
    assert p.observations() == {}
    assert world_map.map_points_in_map() == 0


def test_erase_observation_keeps_well_observed_point(world_map):
    kfs = [FakeKeyFrame(i, u_right=[1.0] * 4) for i in range(4)]
    p = MapPoint([0, 0, 1], kfs[0], world_map)
    for kf in kfs:
        p.add_observation(kf, 0)
    before = p.num_observations()
    p.erase_observation(kfs[3])
    assert p.num_observations() == before - 2
    assert not p.is_bad()
    assert not p.is_in_keyframe(kfs[3])


def test_set_bad_flag_detaches(world_map):
    kf_a, kf_b = FakeKeyFrame(1), FakeKeyFrame(2)
    p = MapPoint([0, 0, 1], kf_a, world_map)
    world_map.add_map_point(p)
    p.add_observation(kf_a, 0)
    p.add_observation(kf_b, 3)
    p.set_bad_flag()
    assert p.is_bad()
    assert kf_a.erased == [0]
    assert kf_b.erased == [3]
    assert p.observations() == {}
    assert p not in world_map.all_map_points()


def test_replace_moves_observations(world_map):
    kf_a, kf_b = FakeKeyFrame(1), FakeKeyFrame(2)
    p = MapPoint([0, 0, 1], kf_a, world_map)
    q = MapPoint([0, 0, 1], kf_b, world_map)
    world_map.add_map_point(p)
    world_map.add_map_point(q)
    p.add_observation(kf_a, 0)
    p.add_observation(kf_b, 1)
    q.add_observation(kf_b, 2)

    p.replace(q)

    assert p.is_bad()
    assert p.replaced() is q
    assert kf_a.replaced == [(0, q)]
    assert kf_b.erased == [1]
    assert q.observations() == {kf_b: 2, kf_a: 0}
    assert world_map.all_map_points() == [q]


def test_replace_with_itself_is_ignored(world_map):
    kf = FakeKeyFrame(1)
    p = MapPoint([0, 0, 1], kf, world_map)
    p.add_observation(kf, 0)
    p.replace(p)
    assert not p.is_bad()
    assert p.observations() == {kf: 0}


def test_found_ratio(world_map):
    p = MapPoint([0, 0, 1], FakeKeyFrame(0), world_map)
    assert p.found_ratio() == 1.0
    p.increase_visible(3)
    assert p.found_ratio() == pytest.approx(0.25)
    p.increase_found(1)
    assert p.found_ratio() == pytest.approx(0.5)


def test_distinctive_descriptor_takes_least_median():
    world_map = Map()
    zeros = np.zeros(32, dtype=np.uint8)
    one_bit = zeros.copy()
    one_bit[0] = 1
    ones = np.full(32, 255, dtype=np.uint8)
    kfs = [
        FakeKeyFrame(1, descriptors=[zeros] * 4),
        FakeKeyFrame(2, descriptors=[one_bit] * 4),
        FakeKeyFrame(3, descriptors=[ones] * 4),
    ]
    p = MapPoint([0, 0, 1], kfs[0], world_map)
    assert p.descriptor() is None
    for kf in kfs:
        p.add_observation(kf, 0)
    p.compute_distinctive_descriptors()
    assert np.array_equal(p.descriptor(), zeros)


def test_distinctive_descriptor_skips_bad_keyframes(world_map):
    zeros = np.zeros((4, 32), dtype=np.uint8)
    ones = np.full((4, 32), 255, dtype=np.uint8)
    bad_kf = FakeKeyFrame(1, descriptors=zeros)
    bad_kf.bad = True
    good_kf = FakeKeyFrame(2, descriptors=ones)
    p = MapPoint([0, 0, 1], good_kf, world_map)
    p.add_observation(bad_kf, 0)
    p.add_observation(good_kf, 1)
    p.compute_distinctive_descriptors()
    assert np.array_equal(p.descriptor(), ones[1])


def test_update_normal_and_depth(world_map):
    kf = FakeKeyFrame(1)
    p = MapPoint([0.0, 0.0, 5.0], kf, world_map)
    p.add_observation(kf, 0)
    p.update_normal_and_depth()
    assert np.allclose(p.normal(), [0.0, 0.0, 1.0])
    assert p.min_distance_invariance() < 5.0 < p.max_distance_invariance()


def test_predict_scale_is_clamped_and_monotonic(world_map):
    kf = FakeKeyFrame(1)
    p = MapPoint([0.0, 0.0, 5.0], kf, world_map)
    p.add_observation(kf, 0)
    p.update_normal_and_depth()
    assert p.predict_scale(5.0, kf) == 0
    assert p.predict_scale(1000.0, kf) == 0
    assert p.predict_scale(1e-6, kf) == LEVELS - 1
    levels = [p.predict_scale(d, kf) for d in (5.0, 4.0, 3.0, 2.0, 1.0, 0.5)]
    assert levels == sorted(levels)


def test_from_frame(world_map):
    descriptors = np.arange(64, dtype=np.uint8).reshape(2, 32)
    frame = FakeFrame(descriptors)
    p = MapPoint.from_frame([0.0, 3.0, 4.0], world_map, frame, 1)
    assert p.first_kf_id == -1
    assert p.first_frame == frame.id
    assert p.reference_keyframe() is None
    assert np.allclose(p.normal(), np.array([0.0, 3.0, 4.0]) / 5.0)
    assert np.array_equal(p.descriptor(), descriptors[1])
    assert p.min_distance_invariance() < 5.0 < p.max_distance_invariance()