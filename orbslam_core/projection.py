"""Matching of map points to image features by projecting them into a view."""

from __future__ import annotations

import math

import numpy as np

from .descriptors import (
    HISTO_LENGTH,
    TH_HIGH,
    TH_LOW,
    descriptor_distance,
    filter_by_rotation,
    radius_by_viewing_cos,
    rotation_bin,
)


def _new_histogram() -> list[list[int]]:
    return [[] for _ in range(HISTO_LENGTH)]


def _discard_inconsistent(histogram, matches) -> int:
    """Clear matches outside the dominant rotations; returns how many were cleared."""
    removed = filter_by_rotation(histogram)
    for index in removed:
        matches[index] = None
    return len(removed)


class ProjectionMatcher:
    """Finds features matching map points projected into frames and keyframes.

    Frames provide ``tcw``, ``fx``, ``fy``, ``cx``, ``cy``, ``mb``, ``mbf``,
    ``min_x``, ``max_x``, ``min_y``, ``max_y``, ``keys``, ``keys_un``,
    ``u_right``, ``descriptors``, ``scale_factors``, ``map_points``,
    ``outliers`` and ``features_in_area(x, y, r, min_level=-1, max_level=-1)``.
    Keyframes additionally provide ``is_in_image(u, v)`` and
    ``map_point_matches()``.
    """

    def __init__(self, nn_ratio: float = 0.6, check_orientation: bool = True) -> None:
        self.nn_ratio = nn_ratio
        self.check_orientation = check_orientation

    def search_local_points(self, frame, map_points, th=3.0) -> int:
        """Match local map points, already projected by tracking, into ``frame``."""
        nmatches = 0
        scale_radius = th != 1.0

        for point in map_points:
            if not point.track_in_view or point.is_bad():
                continue

            level = point.track_scale_level
            r = radius_by_viewing_cos(point.track_view_cos)
            if scale_radius:
                r *= th
            window = r * frame.scale_factors[level]

            indices = frame.features_in_area(
                point.track_proj_x, point.track_proj_y, window, level - 1, level
            )
            if not indices:
                continue

            descriptor = point.descriptor()
            best_dist = best_dist2 = 256
            best_level = best_level2 = -1
            best_idx = -1

            for idx in indices:
                existing = frame.map_points[idx]
                if existing is not None and existing.num_observations() > 0:
                    continue
                if frame.u_right[idx] > 0:
                    if abs(point.track_proj_xr - frame.u_right[idx]) > window:
                        continue

                dist = descriptor_distance(descriptor, frame.descriptors[idx])
                if dist < best_dist:
                    best_dist2, best_dist = best_dist, dist
                    best_level2, best_level = best_level, frame.keys_un[idx].octave
                    best_idx = idx
                elif dist < best_dist2:
                    best_level2 = frame.keys_un[idx].octave
                    best_dist2 = dist

            if best_dist <= TH_HIGH:
                if best_level == best_level2 and best_dist > self.nn_ratio * best_dist2:
                    continue
                frame.map_points[best_idx] = point
                nmatches += 1

        return nmatches

    def search_sim3_projection(self, keyframe, scw, points, matched, th):
        """Project ``points`` with a similarity pose into ``keyframe``.

        Returns a new list of matches, extending ``matched``, and the number of
        matches added.
        """
        scw = np.asarray(scw, dtype=float)
        s_rcw = scw[:3, :3]
        scale = math.sqrt(float(s_rcw[0] @ s_rcw[0]))
        rcw = s_rcw / scale
        tcw = scw[:3, 3] / scale
        ow = -rcw.T @ tcw

        result = list(matched)
        already_found = {p for p in result if p is not None}
        nmatches = 0

        for point in points:
            if point.is_bad() or point in already_found:
                continue

            p3dw = np.ravel(np.asarray(point.world_pos(), dtype=float))
            x, y, z = rcw @ p3dw + tcw
            if z <= 0.0:
                continue

            invz = 1.0 / z
            u = keyframe.fx * x * invz + keyframe.cx
            v = keyframe.fy * y * invz + keyframe.cy
            if not keyframe.is_in_image(u, v):
                continue

            offset = p3dw - ow
            dist = float(np.linalg.norm(offset))
            if dist < point.min_distance_invariance() or dist > point.max_distance_invariance():
                continue
            if float(offset @ np.ravel(point.normal())) < 0.5 * dist:
                continue

            level = point.predict_scale(dist, keyframe)
            radius = th * keyframe.scale_factors[level]
            indices = keyframe.features_in_area(u, v, radius)
            if not indices:
                continue

            descriptor = point.descriptor()
            best_dist = 256
            best_idx = -1
            for idx in indices:
                if result[idx] is not None:
                    continue
                kp_level = keyframe.keys_un[idx].octave
                if kp_level < level - 1 or kp_level > level:
                    continue
                dist_desc = descriptor_distance(descriptor, keyframe.descriptors[idx])
                if dist_desc < best_dist:
                    best_dist = dist_desc
                    best_idx = idx

            if best_dist <= TH_LOW:
                result[best_idx] = point
                nmatches += 1

        return result, nmatches

    def search_last_frame(self, current, last, th, monocular) -> int:
        """Track map points seen in ``last`` into ``current``."""
        histogram = _new_histogram()

        tcw = np.asarray(current.tcw, dtype=float)
        rcw = tcw[:3, :3]
        t = tcw[:3, 3]
        twc = -rcw.T @ t

        tlw = np.asarray(last.tcw, dtype=float)
        tlc = tlw[:3, :3] @ twc + tlw[:3, 3]

        forward = tlc[2] > current.mb and not monocular
        backward = -tlc[2] > current.mb and not monocular

        nmatches = 0
        for i, point in enumerate(last.map_points):
            if point is None or last.outliers[i]:
                continue

            xc, yc, zc = rcw @ np.ravel(np.asarray(point.world_pos(), dtype=float)) + t
            if zc <= 0.0:
                continue
            invz = 1.0 / zc

            u = current.fx * xc * invz + current.cx
            v = current.fy * yc * invz + current.cy
            if u < current.min_x or u > current.max_x:
                continue
            if v < current.min_y or v > current.max_y:
                continue

            octave = last.keys[i].octave
            radius = th * current.scale_factors[octave]

            if forward:
                indices = current.features_in_area(u, v, radius, octave)
            elif backward:
                indices = current.features_in_area(u, v, radius, 0, octave)
            else:
                indices = current.features_in_area(u, v, radius, octave - 1, octave + 1)
            if not indices:
                continue

            descriptor = point.descriptor()
            best_dist = 256
            best_idx = -1
            for idx in indices:
                existing = current.map_points[idx]
                if existing is not None and existing.num_observations() > 0:
                    continue
                if current.u_right[idx] > 0:
                    ur = u - current.mbf * invz
                    if abs(ur - current.u_right[idx]) > radius:
                        continue
                dist = descriptor_distance(descriptor, current.descriptors[idx])
                if dist < best_dist:
                    best_dist = dist
                    best_idx = idx

            if best_dist <= TH_HIGH:
                current.map_points[best_idx] = point
                nmatches += 1
                if self.check_orientation:
                    bin_ = rotation_bin(last.keys_un[i].angle, current.keys_un[best_idx].angle)
                    histogram[bin_].append(best_idx)

        if self.check_orientation:
            nmatches -= _discard_inconsistent(histogram, current.map_points)
        return nmatches

    def search_keyframe(self, current, keyframe, already_found, th, orb_dist) -> int:
        """Match the points of ``keyframe`` not in ``already_found`` into ``current``."""
        tcw = np.asarray(current.tcw, dtype=float)
        rcw = tcw[:3, :3]
        t = tcw[:3, 3]
        ow = -rcw.T @ t

        histogram = _new_histogram()
        nmatches = 0

        for i, point in enumerate(keyframe.map_point_matches()):
            if point is None or point.is_bad() or point in already_found:
                continue

            x3dw = np.ravel(np.asarray(point.world_pos(), dtype=float))
            xc, yc, zc = rcw @ x3dw + t
            if zc == 0.0:
                continue
            invz = 1.0 / zc

            u = current.fx * xc * invz + current.cx
            v = current.fy * yc * invz + current.cy
            if u < current.min_x or u > current.max_x:
                continue
            if v < current.min_y or v > current.max_y:
                continue

            dist3d = float(np.linalg.norm(x3dw - ow))
            if (
                dist3d < point.min_distance_invariance()
                or dist3d > point.max_distance_invariance()
            ):
                continue

            level = point.predict_scale(dist3d, current)
            radius = th * current.scale_factors[level]
            indices = current.features_in_area(u, v, radius, level - 1, level + 1)
            if not indices:
                continue

            descriptor = point.descriptor()
            best_dist = 256
            best_idx = -1
            for idx in indices:
                if current.map_points[idx] is not None:
                    continue
                dist = descriptor_distance(descriptor, current.descriptors[idx])
                if dist < best_dist:
                    best_dist = dist
                    best_idx = idx

            if best_dist <= orb_dist:
                current.map_points[best_idx] = point
                nmatches += 1
                if self.check_orientation:
                    bin_ = rotation_bin(keyframe.keys_un[i].angle, current.keys_un[best_idx].angle)
                    histogram[bin_].append(best_idx)

        if self.check_orientation:
            nmatches -= _discard_inconsistent(histogram, current.map_points)
        return nmatches