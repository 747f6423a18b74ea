"""Map points: 3D landmarks with their observations, descriptor and viewing range."""

from __future__ import annotations

import itertools
import math
import threading

import numpy as np


def _vector(position) -> np.ndarray:
    return np.array(position, dtype=float).reshape(3)


def _descriptor_row(descriptors, index) -> np.ndarray:
    return np.asarray(descriptors[index], dtype=np.uint8).ravel().copy()


class MapPoint:
    """A triangulated landmark shared by the keyframes that observe it.

    Keyframes are expected to provide ``id``, ``frame_id``, ``u_right``,
    ``keys_un``, ``descriptors``, ``scale_factors``, ``n_scale_levels``,
    ``log_scale_factor``, ``camera_center()``, ``is_bad()``,
    ``erase_map_point_match(index)`` and ``replace_map_point_match(index, point)``.
    """

    global_lock = threading.Lock()
    _ids = itertools.count()

    def __init__(self, position, reference_keyframe, world_map) -> None:
        self._setup(
            position,
            world_map,
            reference_keyframe,
            reference_keyframe.id,
            reference_keyframe.frame_id,
        )

    @classmethod
    def from_frame(cls, position, world_map, frame, index) -> "MapPoint":
        """A point created from a single frame observation, without a reference keyframe."""
        point = cls.__new__(cls)
        point._setup(position, world_map, None, -1, frame.id)

        centre = np.ravel(np.asarray(frame.camera_center(), dtype=float))
        offset = point._world_pos - centre
        dist = float(np.linalg.norm(offset))
        point._normal = offset / dist

        level = frame.keys_un[index].octave
        point._max_distance = dist * frame.scale_factors[level]
        point._min_distance = (
            point._max_distance / frame.scale_factors[frame.n_scale_levels - 1]
        )
        point._descriptor = _descriptor_row(frame.descriptors, index)
        return point

    def _setup(self, position, world_map, reference_keyframe, first_kf_id, first_frame):
        self._lock = threading.RLock()
        self.map = world_map
        self.first_kf_id = first_kf_id
        self.first_frame = first_frame

        self._world_pos = _vector(position)
        self._normal = np.zeros(3)
        self._descriptor: np.ndarray | None = None
        self._ref_kf = reference_keyframe
        self._observations: dict = {}
        self._n_obs = 0
        self._visible = 1
        self._found = 1
        self._bad = False
        self._replaced: MapPoint | None = None
        self._min_distance = 0.0
        self._max_distance = 0.0

        # Bookkeeping used by tracking, local mapping and loop closing.
        self.track_in_view = False
        self.track_proj_x = 0.0
        self.track_proj_y = 0.0
        self.track_proj_xr = 0.0
        self.track_scale_level = 0
        self.track_view_cos = 0.0
        self.track_reference_for_frame = 0
        self.last_frame_seen = 0
        self.ba_local_for_kf = 0
        self.fuse_candidate_for_kf = 0
        self.loop_point_for_kf = 0
        self.corrected_by_kf = 0
        self.corrected_reference = 0
        self.ba_global_for_kf = 0
        self.pos_gba: np.ndarray | None = None

        with world_map.point_creation_lock:
            self.id = next(MapPoint._ids)

    def __repr__(self) -> str:
        return f"MapPoint(id={self.id})"

    def set_world_pos(self, position) -> None:
        with MapPoint.global_lock, self._lock:
            self._world_pos = _vector(position)

    def world_pos(self) -> np.ndarray:
        with self._lock:
            return self._world_pos.copy()

    def normal(self) -> np.ndarray:
        with self._lock:
            return self._normal.copy()

    def reference_keyframe(self):
        with self._lock:
            return self._ref_kf

    def add_observation(self, keyframe, index) -> None:
        """Record that ``keyframe`` sees this point at feature ``index``."""
        with self._lock:
            if keyframe in self._observations:
                return
            self._observations[keyframe] = index
            self._n_obs += 2 if keyframe.u_right[index] >= 0 else 1

    def erase_observation(self, keyframe) -> None:
        """Forget an observation; the point turns bad when two or fewer remain."""
        bad = False
        with self._lock:
            if keyframe in self._observations:
                index = self._observations.pop(keyframe)
                self._n_obs -= 2 if keyframe.u_right[index] >= 0 else 1
                if self._ref_kf is keyframe:
                    self._ref_kf = next(iter(self._observations), None)
                bad = self._n_obs <= 2
        if bad:
            self.set_bad_flag()

    def observations(self) -> dict:
        with self._lock:
            return dict(self._observations)

    def num_observations(self) -> int:
        with self._lock:
            return self._n_obs

    def set_bad_flag(self) -> None:
        """Mark the point bad and detach it from its keyframes and the map."""
        with self._lock:
            self._bad = True
            observations = self._observations
            self._observations = {}
        for keyframe, index in observations.items():
            keyframe.erase_map_point_match(index)
        self.map.erase_map_point(self)

    def replaced(self):
        with self._lock:
            return self._replaced

    def replace(self, other: "MapPoint") -> None:
        """Hand every observation of this point over to ``other``."""
        if other.id == self.id:
            return
        with self._lock:
            observations = self._observations
            self._observations = {}
            self._bad = True
            visible = self._visible
            found = self._found
            self._replaced = other

        for keyframe, index in observations.items():
            if not other.is_in_keyframe(keyframe):
                keyframe.replace_map_point_match(index, other)
                other.add_observation(keyframe, index)
            else:
                keyframe.erase_map_point_match(index)

        other.increase_found(found)
        other.increase_visible(visible)
        other.compute_distinctive_descriptors()
        self.map.erase_map_point(self)

    def is_bad(self) -> bool:
        with self._lock:
            return self._bad

    def increase_visible(self, n=1) -> None:
        with self._lock:
            self._visible += n

    def increase_found(self, n=1) -> None:
        with self._lock:
            self._found += n

    def found_ratio(self) -> float:
        with self._lock:
            return self._found / self._visible

    def compute_distinctive_descriptors(self) -> None:
        """Pick the observed descriptor with the least median distance to the others."""
        with self._lock:
            if self._bad:
                return
            observations = dict(self._observations)
        if not observations:
            return

        descriptors = [
            _descriptor_row(keyframe.descriptors, index)
            for keyframe, index in observations.items()
            if not keyframe.is_bad()
        ]
        if not descriptors:
            return

        bits = np.unpackbits(np.stack(descriptors), axis=1)
        distances = (bits[:, None, :] != bits[None, :, :]).sum(axis=2)
        medians = np.sort(distances, axis=1)[:, (len(descriptors) - 1) // 2]
        best = int(np.argmin(medians))

        with self._lock:
            self._descriptor = descriptors[best].copy()

    def descriptor(self) -> np.ndarray | None:
        with self._lock:
            return None if self._descriptor is None else self._descriptor.copy()

    def index_in_keyframe(self, keyframe) -> int:
        with self._lock:
            return self._observations.get(keyframe, -1)

    def is_in_keyframe(self, keyframe) -> bool:
        with self._lock:
            return keyframe in self._observations

    def update_normal_and_depth(self) -> None:
        """Recompute the mean viewing direction and the scale-invariance distances."""
        with self._lock:
            if self._bad:
                return
            observations = dict(self._observations)
            reference = self._ref_kf
            position = self._world_pos.copy()
        if not observations:
            return

        normal = np.zeros(3)
        for keyframe in observations:
            direction = position - np.ravel(np.asarray(keyframe.camera_center(), dtype=float))
            normal += direction / np.linalg.norm(direction)
        normal /= len(observations)

        if reference is None:
            with self._lock:
                self._normal = normal
            return

        centre = np.ravel(np.asarray(reference.camera_center(), dtype=float))
        dist = float(np.linalg.norm(position - centre))
        level = reference.keys_un[observations.get(reference, 0)].octave
        max_distance = dist * reference.scale_factors[level]
        min_distance = max_distance / reference.scale_factors[reference.n_scale_levels - 1]

        with self._lock:
            self._max_distance = max_distance
            self._min_distance = min_distance
            self._normal = normal

    def min_distance_invariance(self) -> float:
        with self._lock:
            return 0.8 * self._min_distance

    def max_distance_invariance(self) -> float:
        with self._lock:
            return 1.2 * self._max_distance

    def predict_scale(self, current_dist, frame) -> int:
        """Pyramid level at which the point should appear at ``current_dist``."""
        with self._lock:
            max_distance = self._max_distance
        top = frame.n_scale_levels - 1
        try:
            ratio = max_distance / current_dist
        except ZeroDivisionError:
            ratio = math.inf if max_distance > 0 else 0.0
        if not ratio > 0:
            return 0
        if math.isinf(ratio):
            return top
        scale = math.ceil(math.log(ratio) / frame.log_scale_factor)
        return min(max(scale, 0), top)