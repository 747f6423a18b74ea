"""ORB feature extraction over an image pyramid with quad-tree keypoint distribution."""

from __future__ import annotations

import math
from dataclasses import replace

import numpy as np

from .descriptors import KeyPoint
from .imaging import fast, gaussian_blur, resize_linear
from .oct_tree import distribute_oct_tree
from .orb_pattern import (
    DESCRIPTOR_BYTES,
    PATCH_SIZE,
    circular_patch_umax,
    compute_descriptors,
    ic_angle,
)

EDGE_THRESHOLD = 19
_CELL_SIZE = 30


class ORBExtractor:
    """Detects FAST corners on every pyramid level and describes them with rotated BRIEF."""

    def __init__(
        self,
        n_features: int = 1000,
        scale_factor: float = 1.2,
        n_levels: int = 8,
        ini_th_fast: int = 20,
        min_th_fast: int = 7,
    ) -> None:
        if n_levels < 1:
            raise ValueError("at least one pyramid level is needed")
        if scale_factor <= 0 or scale_factor == 1.0:
            raise ValueError("scale factor must be positive and different from 1")

        self.n_features = n_features
        self.scale_factor = scale_factor
        self.n_levels = n_levels
        self.ini_th_fast = ini_th_fast
        self.min_th_fast = min_th_fast

        self.scale_factors = [scale_factor**i for i in range(n_levels)]
        self.level_sigma2 = [s * s for s in self.scale_factors]
        self.inv_scale_factors = [1.0 / s for s in self.scale_factors]
        self.inv_level_sigma2 = [1.0 / s2 for s2 in self.level_sigma2]

        factor = 1.0 / scale_factor
        desired = n_features * (1 - factor) / (1 - factor**n_levels)
        per_level = []
        for _ in range(n_levels - 1):
            per_level.append(round(desired))
            desired *= factor
        per_level.append(max(n_features - sum(per_level), 0))
        self.features_per_level = per_level

        self.umax = circular_patch_umax()
        self.image_pyramid: list[np.ndarray] = []

    def compute_pyramid(self, image) -> list[np.ndarray]:
        """Build the scale pyramid of ``image``; each level is scaled from the one above."""
        img = np.asarray(image)
        if img.ndim != 2:
            raise ValueError(f"expected a single-channel 2D image, got shape {img.shape}")
        rows, cols = img.shape

        pyramid = [img.copy()]
        for level in range(1, self.n_levels):
            scale = self.inv_scale_factors[level]
            width = max(1, round(cols * scale))
            height = max(1, round(rows * scale))
            pyramid.append(resize_linear(pyramid[level - 1], width, height))
        self.image_pyramid = pyramid
        return pyramid

    def _level_keypoints(self, level: int) -> list[KeyPoint]:
        img = self.image_pyramid[level]
        rows, cols = img.shape

        min_border_x = EDGE_THRESHOLD - 3
        min_border_y = min_border_x
        max_border_x = cols - EDGE_THRESHOLD + 3
        max_border_y = rows - EDGE_THRESHOLD + 3

        width = max_border_x - min_border_x
        height = max_border_y - min_border_y
        n_cols = int(width / _CELL_SIZE) if width > 0 else 0
        n_rows = int(height / _CELL_SIZE) if height > 0 else 0
        if n_cols <= 0 or n_rows <= 0:
            return []
        w_cell = math.ceil(width / n_cols)
        h_cell = math.ceil(height / n_rows)

        to_distribute: list[KeyPoint] = []
        for i in range(n_rows):
            ini_y = min_border_y + i * h_cell
            if ini_y >= max_border_y - 3:
                continue
            max_y = min(ini_y + h_cell + 6, max_border_y)

            for j in range(n_cols):
                ini_x = min_border_x + j * w_cell
                if ini_x >= max_border_x - 6:
                    continue
                max_x = min(ini_x + w_cell + 6, max_border_x)

                cell = img[ini_y:max_y, ini_x:max_x]
                found = fast(cell, self.ini_th_fast, True)
                if not found:
                    found = fast(cell, self.min_th_fast, True)
                to_distribute.extend(
                    replace(kp, x=kp.x + j * w_cell, y=kp.y + i * h_cell) for kp in found
                )

        if not to_distribute:
            return []

        kept = distribute_oct_tree(
            to_distribute,
            min_border_x,
            max_border_x,
            min_border_y,
            max_border_y,
            self.features_per_level[level],
        )
        patch_size = int(PATCH_SIZE * self.scale_factors[level])
        return [
            replace(
                kp,
                x=kp.x + min_border_x,
                y=kp.y + min_border_y,
                octave=level,
                size=float(patch_size),
            )
            for kp in kept
        ]

    def compute_keypoints_oct_tree(self) -> list[list[KeyPoint]]:
        """Keypoints of every pyramid level, in level coordinates, with orientation."""
        if len(self.image_pyramid) != self.n_levels:
            raise RuntimeError("the image pyramid has not been computed")

        all_keypoints = [self._level_keypoints(level) for level in range(self.n_levels)]
        return [
            [
                replace(kp, angle=ic_angle(self.image_pyramid[level], kp.x, kp.y, self.umax))
                for kp in keypoints
            ]
            for level, keypoints in enumerate(all_keypoints)
        ]

    def extract(self, image):
        """Keypoints in original image coordinates and their descriptors, one row each."""
        img = np.asarray(image)
        if img.size == 0:
            return [], np.zeros((0, DESCRIPTOR_BYTES), dtype=np.uint8)
        if img.ndim != 2 or img.dtype != np.uint8:
            raise ValueError("expected a single-channel 8-bit image")

        self.compute_pyramid(img)
        all_keypoints = self.compute_keypoints_oct_tree()

        keypoints: list[KeyPoint] = []
        descriptor_blocks: list[np.ndarray] = []
        for level, level_keys in enumerate(all_keypoints):
            if not level_keys:
                continue
            blurred = gaussian_blur(self.image_pyramid[level], 7, 2.0)
            descriptor_blocks.append(compute_descriptors(blurred, level_keys))

            if level != 0:
                scale = self.scale_factors[level]
                level_keys = [replace(kp, x=kp.x * scale, y=kp.y * scale) for kp in level_keys]
            keypoints.extend(level_keys)

        if not descriptor_blocks:
            return [], np.zeros((0, DESCRIPTOR_BYTES), dtype=np.uint8)
        return keypoints, np.vstack(descriptor_blocks).astype(np.uint8)