"""Image operations used by the ORB extractor: borders, resizing, blurring and FAST corners."""

from __future__ import annotations

import math

import numpy as np

from .descriptors import KeyPoint

# The 16-pixel Bresenham circle of radius 3, as (dx, dy), in clockwise order.
_CIRCLE = (
    (0, 3), (1, 3), (2, 2), (3, 1), (3, 0), (3, -1), (2, -2), (1, -3),
    (0, -3), (-1, -3), (-2, -2), (-3, -1), (-3, 0), (-3, 1), (-2, 2), (-1, 3),
)
_ARC = 9
_FAST_BORDER = 3
_FAST_KEYPOINT_SIZE = 7.0


def _as_2d(image) -> np.ndarray:
    img = np.asarray(image)
    if img.ndim != 2:
        raise ValueError(f"expected a single-channel 2D image, got shape {img.shape}")
    return img


def _restore_dtype(values: np.ndarray, dtype) -> np.ndarray:
    if np.issubdtype(dtype, np.integer):
        info = np.iinfo(dtype)
        return np.clip(np.rint(values), info.min, info.max).astype(dtype)
    return values.astype(dtype)


def copy_make_border(image, border: int) -> np.ndarray:
    """Pad ``image`` by ``border`` pixels on every side, mirroring without repeating the edge."""
    if border < 0:
        raise ValueError("border must be non-negative")
    img = _as_2d(image)
    if border == 0:
        return img.copy()
    return np.pad(img, ((border, border), (border, border)), mode="reflect")


def _linear_axis(size_in: int, size_out: int):
    scale = size_in / size_out
    coords = (np.arange(size_out) + 0.5) * scale - 0.5
    coords = np.clip(coords, 0.0, size_in - 1)
    lower = np.floor(coords).astype(np.int64)
    upper = np.minimum(lower + 1, size_in - 1)
    weight = coords - lower
    return lower, upper, weight


def resize_linear(image, width: int, height: int) -> np.ndarray:
    """Bilinear resize of ``image`` to ``width`` x ``height`` with pixel-centre alignment."""
    if width <= 0 or height <= 0:
        raise ValueError("target size must be positive")
    img = _as_2d(image)
    if img.size == 0:
        raise ValueError("cannot resize an empty image")
    src = img.astype(float)

    x0, x1, fx = _linear_axis(img.shape[1], width)
    y0, y1, fy = _linear_axis(img.shape[0], height)

    rows = src[y0] * (1.0 - fy)[:, None] + src[y1] * fy[:, None]
    out = rows[:, x0] * (1.0 - fx)[None, :] + rows[:, x1] * fx[None, :]
    return _restore_dtype(out, img.dtype)


def _gaussian_kernel(ksize: int, sigma: float) -> np.ndarray:
    x = np.arange(ksize) - (ksize - 1) / 2.0
    kernel = np.exp(-0.5 * x * x / (sigma * sigma))
    return kernel / kernel.sum()


def gaussian_blur(image, ksize: int = 7, sigma: float = 2.0) -> np.ndarray:
    """Separable Gaussian blur with a square odd-sized kernel and mirrored borders."""
    if ksize <= 0 or ksize % 2 == 0:
        raise ValueError("kernel size must be a positive odd number")
    if sigma <= 0:
        raise ValueError("sigma must be positive")
    img = _as_2d(image)
    kernel = _gaussian_kernel(ksize, sigma)
    r = ksize // 2
    height, width = img.shape

    padded = np.pad(img.astype(float), ((r, r), (r, r)), mode="reflect") if r else img.astype(float)
    horizontal = sum(w * padded[:, k : k + width] for k, w in enumerate(kernel))
    out = sum(w * horizontal[k : k + height, :] for k, w in enumerate(kernel))
    return _restore_dtype(out, img.dtype)


def _corner_scores(img: np.ndarray, threshold: int) -> np.ndarray:
    """FAST-9 scores over the whole image; zero where there is no corner."""
    height, width = img.shape
    scores = np.zeros((height, width), dtype=np.int64)
    b = _FAST_BORDER
    if height <= 2 * b or width <= 2 * b:
        return scores

    src = img.astype(np.int64)
    centre = src[b : height - b, b : width - b]
    diffs = np.stack(
        [
            src[b + dy : height - b + dy, b + dx : width - b + dx] - centre
            for dx, dy in _CIRCLE
        ]
    )
    ring = np.concatenate([diffs, diffs[: _ARC - 1]])

    bright = np.full(centre.shape, np.iinfo(np.int64).min, dtype=np.int64)
    dark = bright.copy()
    for start in range(len(_CIRCLE)):
        arc = ring[start : start + _ARC]
        bright = np.maximum(bright, arc.min(axis=0))
        dark = np.maximum(dark, (-arc).max(axis=0) * -1 if False else (-arc).min(axis=0))

    best = np.maximum(bright, dark)
    inner = np.where(best > threshold, best - 1, 0)
    scores[b : height - b, b : width - b] = inner
    return scores


def fast(image, threshold: int, nonmax_suppression: bool = True) -> list[KeyPoint]:
    """FAST-9 corners of ``image``, row by row, with their corner score as response."""
    img = _as_2d(image)
    threshold = min(max(int(threshold), 0), 255)
    scores = _corner_scores(img, threshold)
    corners = scores > 0

    if nonmax_suppression:
        padded = np.pad(scores, 1, mode="constant")
        height, width = scores.shape
        for dy in (-1, 0, 1):
            for dx in (-1, 0, 1):
                if dx == 0 and dy == 0:
                    continue
                neighbour = padded[1 + dy : 1 + dy + height, 1 + dx : 1 + dx + width]
                corners &= scores > neighbour

    ys, xs = np.nonzero(corners)
    return [
        KeyPoint(
            x=float(x),
            y=float(y),
            size=_FAST_KEYPOINT_SIZE,
            angle=-1.0,
            response=float(scores[y, x]),
            octave=0,
        )
        for y, x in zip(ys.tolist(), xs.tolist())
    ]