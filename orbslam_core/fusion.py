"""Fusion of duplicated map points and similarity-guided matching between keyframes."""

from __future__ import annotations

import math

import numpy as np

from .descriptors import TH_HIGH, TH_LOW, descriptor_distance

_MONO_CHI2 = 5.99
_STEREO_CHI2 = 7.8


def _vec(value) -> np.ndarray:
    return np.ravel(np.asarray(value, dtype=float))


def _decompose_sim3(scw):
    """Rotation, translation and camera centre of a similarity pose with its scale removed."""
    scw = np.asarray(scw, dtype=float)
    s_rcw = scw[:3, :3]
    scale = math.sqrt(float(s_rcw[0] @ s_rcw[0]))
    rcw = s_rcw / scale
    tcw = scw[:3, 3] / scale
    return rcw, tcw, -rcw.T @ tcw


class FusionMatcher:
    """Projects map points into keyframes and merges them with what is found there.

    Keyframes provide ``rotation()``, ``translation()``, ``camera_center()``,
    ``fx``, ``fy``, ``cx``, ``cy``, ``mbf``, ``keys_un``, ``u_right``,
    ``descriptors``, ``scale_factors``, ``inv_level_sigma2``,
    ``is_in_image(u, v)``, ``features_in_area(x, y, r)``, ``map_point(index)``,
    ``map_point_matches()`` and ``add_map_point(point, index)``.
    """

    def __init__(self, nn_ratio: float = 0.6, check_orientation: bool = True) -> None:
        self.nn_ratio = nn_ratio
        self.check_orientation = check_orientation

    def fuse(self, keyframe, map_points, th=3.0) -> int:
        """Project ``map_points`` into ``keyframe``, adding or merging matches.

        Returns the number of points fused.
        """
        rcw = np.asarray(keyframe.rotation(), dtype=float)
        tcw = _vec(keyframe.translation())
        ow = _vec(keyframe.camera_center())

        nfused = 0
        for point in map_points:
            if point is None or point.is_bad() or point.is_in_keyframe(keyframe):
                continue

            p3dw = _vec(point.world_pos())
            x, y, z = rcw @ p3dw + tcw
            if z <= 0.0:
                continue

            invz = 1.0 / z
            u = keyframe.fx * x * invz + keyframe.cx
            v = keyframe.fy * y * invz + keyframe.cy
            if not keyframe.is_in_image(u, v):
                continue
            ur = u - keyframe.mbf * invz

            offset = p3dw - ow
            dist3d = float(np.linalg.norm(offset))
            if (
                dist3d < point.min_distance_invariance()
                or dist3d > point.max_distance_invariance()
            ):
                continue
            if float(offset @ _vec(point.normal())) < 0.5 * dist3d:
                continue

            level = point.predict_scale(dist3d, keyframe)
            radius = th * keyframe.scale_factors[level]
            indices = keyframe.features_in_area(u, v, radius)
            if not indices:
                continue

            descriptor = point.descriptor()
            if descriptor is None:
                continue

            best_dist = 256
            best_idx = -1
            for idx in indices:
                kp = keyframe.keys_un[idx]
                kp_level = kp.octave
                if kp_level < level - 1 or kp_level > level:
                    continue

                ex = u - kp.x
                ey = v - kp.y
                e2 = ex * ex + ey * ey
                if keyframe.u_right[idx] >= 0:
                    er = ur - keyframe.u_right[idx]
                    if (e2 + er * er) * keyframe.inv_level_sigma2[kp_level] > _STEREO_CHI2:
                        continue
                elif e2 * keyframe.inv_level_sigma2[kp_level] > _MONO_CHI2:
                    continue

                dist = descriptor_distance(descriptor, keyframe.descriptors[idx])
                if dist < best_dist:
                    best_dist = dist
                    best_idx = idx

            if best_dist <= TH_LOW:
                existing = keyframe.map_point(best_idx)
                if existing is not None:
                    if not existing.is_bad():
                        if existing.num_observations() > point.num_observations():
                            point.replace(existing)
                        else:
                            existing.replace(point)
                else:
                    point.add_observation(keyframe, best_idx)
                    keyframe.add_map_point(point, best_idx)
                nfused += 1

        return nfused

    def fuse_sim3(self, keyframe, scw, points, th):
        """Project ``points`` with a similarity pose into ``keyframe``.

        Empty feature slots receive the point. Where the slot already holds a
        good point it is reported instead. Returns the list of such points,
        aligned with ``points`` (``None`` elsewhere), and the number fused.
        """
        rcw, tcw, ow = _decompose_sim3(scw)
        already_found = {p for p in keyframe.map_point_matches() if p is not None}
        replace_points: list = [None] * len(points)

        nfused = 0
        for i, point in enumerate(points):
            if point.is_bad() or point in already_found:
                continue

            p3dw = _vec(point.world_pos())
            x, y, z = rcw @ p3dw + tcw
            if z <= 0.0:
                continue

            invz = 1.0 / z
            u = keyframe.fx * x * invz + keyframe.cx
            v = keyframe.fy * y * invz + keyframe.cy
            if not keyframe.is_in_image(u, v):
                continue

            offset = p3dw - ow
            dist3d = float(np.linalg.norm(offset))
            if (
                dist3d < point.min_distance_invariance()
                or dist3d > point.max_distance_invariance()
            ):
                continue
            if float(offset @ _vec(point.normal())) < 0.5 * dist3d:
                continue

            level = point.predict_scale(dist3d, keyframe)
            radius = th * keyframe.scale_factors[level]
            indices = keyframe.features_in_area(u, v, radius)
            if not indices:
                continue

            descriptor = point.descriptor()
            if descriptor is None:
                continue

            best_dist = math.inf
            best_idx = -1
            for idx in indices:
                kp_level = keyframe.keys_un[idx].octave
                if kp_level < level - 1 or kp_level > level:
                    continue
                dist = descriptor_distance(descriptor, keyframe.descriptors[idx])
                if dist < best_dist:
                    best_dist = dist
                    best_idx = idx

            if best_dist <= TH_LOW:
                existing = keyframe.map_point(best_idx)
                if existing is not None:
                    if not existing.is_bad():
                        replace_points[i] = existing
                else:
                    point.add_observation(keyframe, best_idx)
                    keyframe.add_map_point(point, best_idx)
                nfused += 1

        return replace_points, nfused

    def search_by_sim3(self, keyframe1, keyframe2, matches12, s12, r12, t12, th):
        """Find mutual matches between two keyframes related by a similarity.

        Returns a new match list, extending ``matches12``, and the number of
        matches added.
        """
        fx, fy, cx, cy = keyframe1.fx, keyframe1.fy, keyframe1.cx, keyframe1.cy

        r1w = np.asarray(keyframe1.rotation(), dtype=float)
        t1w = _vec(keyframe1.translation())
        r2w = np.asarray(keyframe2.rotation(), dtype=float)
        t2w = _vec(keyframe2.translation())

        r12 = np.asarray(r12, dtype=float)
        t12 = _vec(t12)
        s_r12 = s12 * r12
        s_r21 = (1.0 / s12) * r12.T
        t21 = -s_r21 @ t12

        points1 = keyframe1.map_point_matches()
        points2 = keyframe2.map_point_matches()
        n1, n2 = len(points1), len(points2)

        result = list(matches12)
        already1 = [False] * n1
        already2 = [False] * n2
        for i, point in enumerate(result[:n1]):
            if point is not None:
                already1[i] = True
                idx2 = point.index_in_keyframe(keyframe2)
                if 0 <= idx2 < n2:
                    already2[idx2] = True

        def best_match(point, p3dc, target):
            x, y, z = p3dc
            if z <= 0.0:
                return -1
            invz = 1.0 / z
            u = fx * x * invz + cx
            v = fy * y * invz + cy
            if not target.is_in_image(u, v):
                return -1

            dist3d = float(np.linalg.norm(p3dc))
            if (
                dist3d < point.min_distance_invariance()
                or dist3d > point.max_distance_invariance()
            ):
                return -1

            level = point.predict_scale(dist3d, target)
            radius = th * target.scale_factors[level]
            indices = target.features_in_area(u, v, radius)
            if not indices:
                return -1

            descriptor = point.descriptor()
            if descriptor is None:
                return -1

            best_dist = math.inf
            best_idx = -1
            for idx in indices:
                octave = target.keys_un[idx].octave
                if octave < level - 1 or octave > level:
                    continue
                dist = descriptor_distance(descriptor, target.descriptors[idx])
                if dist < best_dist:
                    best_dist = dist
                    best_idx = idx
            return best_idx if best_dist <= TH_HIGH else -1

        match1 = [-1] * n1
        for i1, point in enumerate(points1):
            if point is None or already1[i1] or point.is_bad():
                continue
            p3dc1 = r1w @ _vec(point.world_pos()) + t1w
            match1[i1] = best_match(point, s_r21 @ p3dc1 + t21, keyframe2)

        match2 = [-1] * n2
        for i2, point in enumerate(points2):
            if point is None or already2[i2] or point.is_bad():
                continue
            p3dc2 = r2w @ _vec(point.world_pos()) + t2w
            match2[i2] = best_match(point, s_r12 @ p3dc2 + t12, keyframe1)

        nfound = 0
        for i1, idx2 in enumerate(match1):
            if idx2 >= 0 and match2[idx2] == i1:
                result[i1] = points2[idx2]
                nfound += 1

        return result, nfound