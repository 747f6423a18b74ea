"""Feature matching between two views for map initialisation and triangulation."""

from __future__ import annotations

import math

import numpy as np

from .descriptors import (
    HISTO_LENGTH,
    TH_LOW,
    check_dist_epipolar_line,
    descriptor_distance,
    filter_by_rotation,
    rotation_bin,
)


def _new_histogram() -> list[list[int]]:
    return [[] for _ in range(HISTO_LENGTH)]


def _common_words(a, b) -> list:
    """Vocabulary nodes present in both feature vectors, in ascending order."""
    return sorted(a.keys() & b.keys())


def _vec(value) -> np.ndarray:
    return np.ravel(np.asarray(value, dtype=float))


class PairMatcher:
    """Matches features between two frames or two keyframes.

    Frames provide ``keys_un``, ``descriptors`` and
    ``features_in_area(x, y, r, min_level, max_level)``. Keyframes provide
    ``feat_vec`` (node id to feature indices), ``camera_center()``,
    ``rotation()``, ``translation()``, ``fx``, ``fy``, ``cx``, ``cy``,
    ``keys_un``, ``u_right``, ``descriptors``, ``scale_factors``,
    ``level_sigma2`` and ``map_point(index)``.
    """

    def __init__(self, nn_ratio: float = 0.6, check_orientation: bool = True) -> None:
        self.nn_ratio = nn_ratio
        self.check_orientation = check_orientation

    def search_for_initialization(self, frame1, frame2, prev_matched, window_size=10):
        """Match finest-level features of ``frame1`` around their previous positions in ``frame2``.

        Returns the match index in ``frame2`` for every feature of ``frame1``
        (-1 where unmatched), the updated previous positions and the number of
        matches.
        """
        n1 = len(frame1.keys_un)
        n2 = len(frame2.keys_un)
        matches12 = [-1] * n1
        matches21 = [-1] * n2
        matched_distance = [math.inf] * n2
        histogram = _new_histogram()
        nmatches = 0

        for i1, kp1 in enumerate(frame1.keys_un):
            level = kp1.octave
            if level > 0:
                continue

            px, py = prev_matched[i1]
            indices = frame2.features_in_area(px, py, window_size, level, level)
            if not indices:
                continue

            d1 = frame1.descriptors[i1]
            best_dist = best_dist2 = math.inf
            best_idx2 = -1
            for i2 in indices:
                dist = descriptor_distance(d1, frame2.descriptors[i2])
                if matched_distance[i2] <= dist:
                    continue
                if dist < best_dist:
                    best_dist2, best_dist = best_dist, dist
                    best_idx2 = i2
                elif dist < best_dist2:
                    best_dist2 = dist

            if best_dist <= TH_LOW and best_dist < best_dist2 * self.nn_ratio:
                previous = matches21[best_idx2]
                if previous >= 0:
                    matches12[previous] = -1
                    nmatches -= 1
                matches12[i1] = best_idx2
                matches21[best_idx2] = i1
                matched_distance[best_idx2] = best_dist
                nmatches += 1

                if self.check_orientation:
                    bin_ = rotation_bin(kp1.angle, frame2.keys_un[best_idx2].angle)
                    histogram[bin_].append(i1)

        if self.check_orientation:
            for idx1 in filter_by_rotation(histogram):
                if matches12[idx1] >= 0:
                    matches12[idx1] = -1
                    nmatches -= 1

        updated = [
            frame2.keys_un[m].pt if m >= 0 else tuple(prev)
            for m, prev in zip(matches12, prev_matched)
        ]
        return matches12, updated, nmatches

    def search_for_triangulation(self, keyframe1, keyframe2, f12, only_stereo=False):
        """Pairs of untracked features of two keyframes that satisfy the epipolar constraint.

        Returns ``(index1, index2)`` pairs ordered by ``index1``.
        """
        cw = _vec(keyframe1.camera_center())
        r2w = np.asarray(keyframe2.rotation(), dtype=float)
        t2w = _vec(keyframe2.translation())
        c2 = r2w @ cw + t2w
        if c2[2] == 0.0:
            ex = ey = math.inf
        else:
            invz = 1.0 / c2[2]
            ex = keyframe2.fx * c2[0] * invz + keyframe2.cx
            ey = keyframe2.fy * c2[1] * invz + keyframe2.cy

        matched2 = [False] * len(keyframe2.keys_un)
        matches12 = [-1] * len(keyframe1.keys_un)
        histogram = _new_histogram()

        for word in _common_words(keyframe1.feat_vec, keyframe2.feat_vec):
            indices2 = keyframe2.feat_vec[word]
            for idx1 in keyframe1.feat_vec[word]:
                if keyframe1.map_point(idx1) is not None:
                    continue
                stereo1 = keyframe1.u_right[idx1] >= 0
                if only_stereo and not stereo1:
                    continue

                kp1 = keyframe1.keys_un[idx1]
                d1 = keyframe1.descriptors[idx1]
                best_dist = TH_LOW
                best_idx2 = -1

                for idx2 in indices2:
                    if matched2[idx2] or keyframe2.map_point(idx2) is not None:
                        continue
                    stereo2 = keyframe2.u_right[idx2] >= 0
                    if only_stereo and not stereo2:
                        continue

                    dist = descriptor_distance(d1, keyframe2.descriptors[idx2])
                    if dist > TH_LOW or dist > best_dist:
                        continue

                    kp2 = keyframe2.keys_un[idx2]
                    if not stereo1 and not stereo2:
                        dx = ex - kp2.x
                        dy = ey - kp2.y
                        if dx * dx + dy * dy < 100 * keyframe2.scale_factors[kp2.octave]:
                            continue

                    if check_dist_epipolar_line(kp1, kp2, f12, keyframe2.level_sigma2):
                        best_idx2 = idx2
                        best_dist = dist

                if best_idx2 >= 0:
                    matches12[idx1] = best_idx2
                    if self.check_orientation:
                        bin_ = rotation_bin(kp1.angle, keyframe2.keys_un[best_idx2].angle)
                        histogram[bin_].append(idx1)

        if self.check_orientation:
            for idx1 in filter_by_rotation(histogram):
                matches12[idx1] = -1

        return [(i1, i2) for i1, i2 in enumerate(matches12) if i2 >= 0]