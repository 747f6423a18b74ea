"""Descriptor matching restricted to features that share a vocabulary node."""

from __future__ import annotations

from .descriptors import (
    HISTO_LENGTH,
    TH_LOW,
    descriptor_distance,
    filter_by_rotation,
    rotation_bin,
)


def _common_words(a, b) -> list:
    """Vocabulary nodes present in both feature vectors, in ascending order."""
    return sorted(a.keys() & b.keys())


def _new_histogram() -> list[list[int]]:
    return [[] for _ in range(HISTO_LENGTH)]


def _discard_inconsistent(histogram, matches) -> int:
    removed = filter_by_rotation(histogram)
    for index in removed:
        matches[index] = None
    return len(removed)


class BowMatcher:
    """Matches features grouped by bag-of-words node.

    Keyframes provide ``feat_vec`` (node id to feature indices),
    ``descriptors``, ``keys_un`` and ``map_point_matches()``. Frames provide
    ``feat_vec``, ``descriptors`` and ``keys``.
    """

    def __init__(self, nn_ratio: float = 0.6, check_orientation: bool = True) -> None:
        self.nn_ratio = nn_ratio
        self.check_orientation = check_orientation

    def search_by_bow_frame(self, keyframe, frame):
        """Match the map points of ``keyframe`` to the features of ``frame``.

        Returns a list with one entry per frame feature, holding the matched
        map point or ``None``, and the number of matches.
        """
        kf_points = keyframe.map_point_matches()
        matches: list = [None] * len(frame.keys)
        histogram = _new_histogram()
        nmatches = 0

        for word in _common_words(keyframe.feat_vec, frame.feat_vec):
            frame_indices = frame.feat_vec[word]
            for idx_kf in keyframe.feat_vec[word]:
                point = kf_points[idx_kf]
                if point is None or point.is_bad():
                    continue

                d_kf = keyframe.descriptors[idx_kf]
                best_dist1 = best_dist2 = 256
                best_idx = -1
                for idx_f in frame_indices:
                    if matches[idx_f] is not None:
                        continue
                    dist = descriptor_distance(d_kf, frame.descriptors[idx_f])
                    if dist < best_dist1:
                        best_dist2, best_dist1 = best_dist1, dist
                        best_idx = idx_f
                    elif dist < best_dist2:
                        best_dist2 = dist

                if best_dist1 <= TH_LOW and best_dist1 < self.nn_ratio * best_dist2:
                    matches[best_idx] = point
                    if self.check_orientation:
                        bin_ = rotation_bin(
                            keyframe.keys_un[idx_kf].angle, frame.keys[best_idx].angle
                        )
                        histogram[bin_].append(best_idx)
                    nmatches += 1

        if self.check_orientation:
            nmatches -= _discard_inconsistent(histogram, matches)
        return matches, nmatches

    def search_by_bow(self, keyframe1, keyframe2):
        """Match map points of ``keyframe1`` to map points of ``keyframe2``.

        Returns a list with one entry per feature of ``keyframe1``, holding the
        matched point of ``keyframe2`` or ``None``, and the number of matches.
        """
        points1 = keyframe1.map_point_matches()
        points2 = keyframe2.map_point_matches()
        matches: list = [None] * len(points1)
        matched2 = [False] * len(points2)
        histogram = _new_histogram()
        nmatches = 0

        for word in _common_words(keyframe1.feat_vec, keyframe2.feat_vec):
            indices2 = keyframe2.feat_vec[word]
            for idx1 in keyframe1.feat_vec[word]:
                point1 = points1[idx1]
                if point1 is None or point1.is_bad():
                    continue

                d1 = keyframe1.descriptors[idx1]
                best_dist1 = best_dist2 = 256
                best_idx2 = -1
                for idx2 in indices2:
                    point2 = points2[idx2]
                    if matched2[idx2] or point2 is None or point2.is_bad():
                        continue
                    dist = descriptor_distance(d1, keyframe2.descriptors[idx2])
                    if dist < best_dist1:
                        best_dist2, best_dist1 = best_dist1, dist
                        best_idx2 = idx2
                    elif dist < best_dist2:
                        best_dist2 = dist

                if best_dist1 < TH_LOW and best_dist1 < self.nn_ratio * best_dist2:
                    matches[idx1] = points2[best_idx2]
                    matched2[best_idx2] = True
                    if self.check_orientation:
                        bin_ = rotation_bin(
                            keyframe1.keys_un[idx1].angle, keyframe2.keys_un[best_idx2].angle
                        )
                        histogram[bin_].append(idx1)
                    nmatches += 1

        if self.check_orientation:
            nmatches -= _discard_inconsistent(histogram, matches)
        return matches, nmatches