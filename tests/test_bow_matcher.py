import threading

import numpy as np
import pytest

from orbslam_core.bow_matcher import BowMatcher
from orbslam_core.descriptors import TH_LOW, KeyPoint, descriptor_distance
from orbslam_core.mappoint import MapPoint


class FakeMap:
    def __init__(self):
        self.point_creation_lock = threading.Lock()

    def erase_map_point(self, point):
        pass


class View:
    def __init__(self, descriptors, feat_vec, angles, kid=0):
        self.id = kid
        self.frame_id = kid
        self.descriptors = np.asarray(descriptors, dtype=np.uint8)
        self.feat_vec = feat_vec
        self.keys = [KeyPoint(10.0 * i, 10.0, angle=a) for i, a in enumerate(angles)]
        self.keys_un = self.keys
        self.slots = [None] * len(angles)

    def map_point_matches(self):
        return list(self.slots)


@pytest.fixture
def world_map():
    return FakeMap()


def random_descriptors(n, seed=3):
    return np.random.default_rng(seed).integers(0, 256, size=(n, 32), dtype=np.uint8)


def flip_bits(descriptor, count):
    bits = np.unpackbits(np.asarray(descriptor, dtype=np.uint8))
    bits[:count] ^= 1
    return np.packbits(bits)


def populate(view, world_map):
    for i in range(len(view.slots)):
        view.slots[i] = MapPoint((0.0, 0.0, 1.0), view, world_map)
    return view.slots


def test_frame_matching_within_shared_words(world_map):
    desc = random_descriptors(3)
    kf = View(desc, {1: [0, 1], 4: [2]}, [0.0] * 3)
    points = populate(kf, world_map)
    frame = View(desc[[1, 0, 2]], {1: [1, 0], 4: [2]}, [0.0] * 3)

    matches, n = BowMatcher().search_by_bow_frame(kf, frame)

    assert matches[1] is points[0]
    assert matches[0] is points[1]
    assert matches[2] is points[2]
    assert n == sum(m is not None for m in matches)


def test_frame_without_shared_words_has_no_matches(world_map):
    desc = random_descriptors(2)
    kf = View(desc, {1: [0, 1]}, [0.0, 0.0])
    populate(kf, world_map)
    frame = View(desc, {2: [0, 1]}, [0.0, 0.0])

    matches, n = BowMatcher().search_by_bow_frame(kf, frame)

    assert matches == [None, None]
    assert n == 0


def test_frame_skips_missing_and_bad_points(world_map):
    desc = random_descriptors(3)
    kf = View(desc, {1: [0, 1, 2]}, [0.0] * 3)
    points = populate(kf, world_map)
    kf.slots[0] = None
    points[1].set_bad_flag()
    frame = View(desc, {1: [0, 1, 2]}, [0.0] * 3)

    matches, n = BowMatcher().search_by_bow_frame(kf, frame)

    assert matches[0] is None
    assert matches[1] is None
    assert matches[2] is points[2]
    assert n == 1


@pytest.mark.parametrize("flipped, accepted", [(TH_LOW, True), (TH_LOW + 1, False)])
def test_frame_distance_threshold_is_inclusive(world_map, flipped, accepted):
    desc = random_descriptors(1)
    kf = View(desc, {1: [0]}, [0.0])
    points = populate(kf, world_map)
    frame = View([flip_bits(desc[0], flipped)], {1: [0]}, [0.0])
    assert descriptor_distance(desc[0], frame.descriptors[0]) == flipped

    matches, _ = BowMatcher().search_by_bow_frame(kf, frame)

    assert (matches[0] is points[0]) is accepted


def test_frame_orientation_filter_drops_outlier(world_map):
    n_features = 13
    desc = random_descriptors(n_features)
    words = {w: [w] for w in range(n_features)}
    kf_angles = [0.0] * n_features
    kf_angles[-1] = 150.0
    kf = View(desc, words, kf_angles)
    points = populate(kf, world_map)
    frame = View(desc, dict(words), [0.0] * n_features)

    filtered, n_filtered = BowMatcher().search_by_bow_frame(kf, frame)
    unfiltered, n_unfiltered = BowMatcher(check_orientation=False).search_by_bow_frame(kf, frame)

    assert filtered[-1] is None
    assert filtered[:-1] == points[:-1]
    assert n_filtered == n_unfiltered - 1
    assert unfiltered == points


def test_keyframe_matching_pairs_points(world_map):
    desc = random_descriptors(3)
    kf1 = View(desc, {2: [0, 1], 5: [2]}, [0.0] * 3, kid=1)
    kf2 = View(desc[[1, 0, 2]], {2: [0, 1], 5: [2]}, [0.0] * 3, kid=2)
    populate(kf1, world_map)
    points2 = populate(kf2, world_map)

    matches, n = BowMatcher().search_by_bow(kf1, kf2)

    assert matches[0] is points2[1]
    assert matches[1] is points2[0]
    assert matches[2] is points2[2]
    assert n == len(matches)


def test_keyframe_matching_needs_point_in_second_keyframe(world_map):
    desc = random_descriptors(2)
    kf1 = View(desc, {2: [0, 1]}, [0.0, 0.0], kid=1)
    kf2 = View(desc, {2: [0, 1]}, [0.0, 0.0], kid=2)
    populate(kf1, world_map)
    points2 = populate(kf2, world_map)
    kf2.slots[0] = None

    matches, n = BowMatcher().search_by_bow(kf1, kf2)

    assert matches == [None, points2[1]]
    assert n == 1


@pytest.mark.parametrize("flipped, accepted", [(TH_LOW - 1, True), (TH_LOW, False)])
def test_keyframe_distance_threshold_is_strict(world_map, flipped, accepted):
    desc = random_descriptors(1)
    kf1 = View(desc, {1: [0]}, [0.0], kid=1)
    kf2 = View([flip_bits(desc[0], flipped)], {1: [0]}, [0.0], kid=2)
    populate(kf1, world_map)
    points2 = populate(kf2, world_map)

    matches, n = BowMatcher().search_by_bow(kf1, kf2)

    assert (matches[0] is points2[0]) is accepted
    assert n == int(accepted)