"""Geometry for visualising the map: point clouds, camera frustums and graph edges."""

from __future__ import annotations

import threading
from dataclasses import dataclass, fields
from typing import Mapping

import numpy as np

_SETTING_KEYS = {
    "keyframe_size": "Viewer.KeyFrameSize",
    "keyframe_line_width": "Viewer.KeyFrameLineWidth",
    "graph_line_width": "Viewer.GraphLineWidth",
    "point_size": "Viewer.PointSize",
    "camera_size": "Viewer.CameraSize",
    "camera_line_width": "Viewer.CameraLineWidth",
}

COVISIBILITY_WEIGHT = 100


@dataclass(frozen=True)
class DrawerSettings:
    """Sizes and line widths used when drawing the map."""

    keyframe_size: float = 0.0
    keyframe_line_width: float = 0.0
    graph_line_width: float = 0.0
    point_size: float = 0.0
    camera_size: float = 0.0
    camera_line_width: float = 0.0

    @classmethod
    def from_mapping(cls, settings: Mapping) -> "DrawerSettings":
        """Read the Viewer.* entries of a settings mapping; missing ones are 0."""
        return cls(
            **{
                f.name: float(settings.get(_SETTING_KEYS[f.name], 0.0))
                for f in fields(cls)
            }
        )


def _segments(items) -> np.ndarray:
    if not items:
        return np.empty((0, 2, 3))
    return np.array(items, dtype=float).reshape(-1, 2, 3)


def _points(items) -> np.ndarray:
    if not items:
        return np.empty((0, 3))
    return np.array(items, dtype=float).reshape(-1, 3)


def _transform(twc: np.ndarray, points: np.ndarray) -> np.ndarray:
    return points @ twc[:3, :3].T + twc[:3, 3]


def camera_frustum_lines(size: float) -> np.ndarray:
    """The eight line segments of a camera frustum in its own frame, shape (8, 2, 3)."""
    w = size
    h = w * 0.75
    z = w * 0.6
    origin = (0.0, 0.0, 0.0)
    return np.array(
        [
            (origin, (w, h, z)),
            (origin, (w, -h, z)),
            (origin, (-w, -h, z)),
            (origin, (-w, h, z)),
            ((w, h, z), (w, -h, z)),
            ((-w, h, z), (-w, -h, z)),
            ((-w, h, z), (w, h, z)),
            ((-w, -h, z), (w, -h, z)),
        ],
        dtype=float,
    )


def opengl_camera_matrix(pose) -> np.ndarray:
    """Column-major 4x4 camera-to-world matrix (16 values) from a world-to-camera pose."""
    pose = np.asarray(pose, dtype=float)
    rwc = pose[:3, :3].T
    twc = -rwc @ pose[:3, 3]
    m = np.eye(4)
    m[:3, :3] = rwc
    m[:3, 3] = twc
    return m.T.ravel()


class MapDrawer:
    """Produces the vertices and line segments needed to render a map."""

    def __init__(self, world_map, settings: DrawerSettings) -> None:
        self.map = world_map
        self.settings = settings
        self._camera_lock = threading.Lock()
        self._camera_pose: np.ndarray | None = None

    def set_current_camera_pose(self, pose) -> None:
        with self._camera_lock:
            self._camera_pose = np.array(pose, dtype=float, copy=True)

    def current_opengl_camera_matrix(self) -> np.ndarray:
        """Column-major camera-to-world matrix, identity when no pose is set."""
        with self._camera_lock:
            pose = self._camera_pose
        if pose is None:
            return np.eye(4).ravel()
        return opengl_camera_matrix(pose)

    def map_point_vertices(self) -> tuple[np.ndarray, np.ndarray]:
        """World positions of ordinary map points and of reference map points."""
        points = self.map.all_map_points()
        references = list(dict.fromkeys(self.map.reference_map_points()))
        if not points:
            return _points([]), _points([])
        reference_set = set(references)
        ordinary = [
            np.ravel(p.world_pos())
            for p in points
            if not p.is_bad() and p not in reference_set
        ]
        referenced = [np.ravel(p.world_pos()) for p in references if not p.is_bad()]
        return _points(ordinary), _points(referenced)

    def keyframe_lines(self) -> np.ndarray:
        """Frustum segments of every keyframe in world coordinates."""
        frustum = camera_frustum_lines(self.settings.keyframe_size)
        segments = [
            _transform(np.asarray(kf.pose_inverse(), dtype=float), frustum)
            for kf in self.map.all_keyframes()
        ]
        if not segments:
            return _segments([])
        return np.concatenate(segments)

    def graph_lines(self) -> np.ndarray:
        """Covisibility, spanning tree and loop edges between camera centres."""
        lines = []
        for kf in self.map.all_keyframes():
            centre = np.ravel(kf.camera_center())
            for other in kf.covisibles_by_weight(COVISIBILITY_WEIGHT):
                if other.id < kf.id:
                    continue
                lines.append((centre, np.ravel(other.camera_center())))
            parent = kf.parent()
            if parent is not None:
                lines.append((centre, np.ravel(parent.camera_center())))
            for other in kf.loop_edges():
                if other.id < kf.id:
                    continue
                lines.append((centre, np.ravel(other.camera_center())))
        return _segments(lines)

    def current_camera_lines(self) -> np.ndarray:
        """Frustum segments of the current camera in world coordinates."""
        twc = self.current_opengl_camera_matrix().reshape(4, 4).T
        return _transform(twc, camera_frustum_lines(self.settings.camera_size))