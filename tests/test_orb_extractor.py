import numpy as np
import pytest

from orbslam_core.imaging import gaussian_blur
from orbslam_core.orb_extractor import ORBExtractor
from orbslam_core.orb_pattern import PATCH_SIZE, compute_orb_descriptor


@pytest.fixture
def image():
    rng = np.random.default_rng(0)
    coarse = rng.integers(0, 256, size=(25, 35), dtype=np.uint8)
    return np.kron(coarse, np.ones((4, 4), dtype=np.uint8))


@pytest.fixture
def extractor():
    return ORBExtractor(n_features=100, scale_factor=1.2, n_levels=3, ini_th_fast=20, min_th_fast=7)


def test_scale_tables_are_consistent():
    ex = ORBExtractor(n_features=500, scale_factor=1.2, n_levels=8)
    assert ex.scale_factors[0] == 1.0
    assert ex.level_sigma2[0] == 1.0
    for s, s2, inv, inv2 in zip(
        ex.scale_factors, ex.level_sigma2, ex.inv_scale_factors, ex.inv_level_sigma2
    ):
        assert s2 == pytest.approx(s * s)
        assert inv == pytest.approx(1.0 / s)
        assert inv2 == pytest.approx(1.0 / s2)
    assert all(b > a for a, b in zip(ex.scale_factors, ex.scale_factors[1:]))


def test_features_per_level_sum_to_total():
    ex = ORBExtractor(n_features=1000, scale_factor=1.2, n_levels=8)
    assert sum(ex.features_per_level) == 1000
    assert len(ex.features_per_level) == 8
    assert all(b <= a for a, b in zip(ex.features_per_level[:-1], ex.features_per_level[1:-1]))


def test_invalid_parameters_raise():
    with pytest.raises(ValueError):
        ORBExtractor(n_levels=0)
    with pytest.raises(ValueError):
        ORBExtractor(scale_factor=1.0)


def test_pyramid_levels_shrink(extractor, image):
    pyramid = extractor.compute_pyramid(image)
    assert len(pyramid) == 3
    assert np.array_equal(pyramid[0], image)
    for level in range(1, 3):
        expected = (
            round(image.shape[0] * extractor.inv_scale_factors[level]),
            round(image.shape[1] * extractor.inv_scale_factors[level]),
        )
        assert pyramid[level].shape == expected
        assert pyramid[level].dtype == np.uint8


def test_keypoints_need_pyramid(extractor):
    with pytest.raises(RuntimeError):
        extractor.compute_keypoints_oct_tree()


def test_keypoints_per_level_lie_inside_level(extractor, image):
    extractor.compute_pyramid(image)
    levels = extractor.compute_keypoints_oct_tree()
    assert len(levels) == 3
    assert sum(len(keys) for keys in levels) > 0
    for level, keys in enumerate(levels):
        rows, cols = extractor.image_pyramid[level].shape
        for kp in keys:
            assert kp.octave == level
            assert 0 <= kp.x < cols and 0 <= kp.y < rows
            assert 0.0 <= kp.angle < 360.0
            assert kp.size == int(PATCH_SIZE * extractor.scale_factors[level])


def test_extract_matches_keypoints_and_descriptors(extractor, image):
    keypoints, descriptors = extractor.extract(image)
    assert len(keypoints) > 0
    assert descriptors.shape == (len(keypoints), 32)
    assert descriptors.dtype == np.uint8
    rows, cols = image.shape
    for kp in keypoints:
        assert 0 <= kp.octave < 3
        assert 0 <= kp.x < cols and 0 <= kp.y < rows


def test_level_zero_descriptors_come_from_blurred_image(extractor, image):
    keypoints, descriptors = extractor.extract(image)
    blurred = gaussian_blur(image, 7, 2.0)
    level0 = [(i, kp) for i, kp in enumerate(keypoints) if kp.octave == 0]
    assert level0
    for i, kp in level0:
        assert np.array_equal(descriptors[i], compute_orb_descriptor(blurred, kp))


def test_extract_is_deterministic(extractor, image):
    first_keys, first_desc = extractor.extract(image)
    second_keys, second_desc = extractor.extract(image)
    assert [(k.x, k.y, k.octave) for k in first_keys] == [
        (k.x, k.y, k.octave) for k in second_keys
    ]
    assert np.array_equal(first_desc, second_desc)


def test_empty_image_gives_nothing(extractor):
    keypoints, descriptors = extractor.extract(np.zeros((0, 0), dtype=np.uint8))
    assert keypoints == []
    assert descriptors.shape == (0, 32)


def test_flat_image_has_no_features(extractor):
    keypoints, descriptors = extractor.extract(np.full((100, 140), 128, dtype=np.uint8))
    assert keypoints == []
    assert descriptors.shape == (0, 32)


def test_wrong_dtype_raises(extractor):
    with pytest.raises(ValueError):
        extractor.extract(np.zeros((100, 140), dtype=np.float32))