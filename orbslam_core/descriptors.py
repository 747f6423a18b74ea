"""Binary descriptor distances and the match-filtering helpers shared by the matchers."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence, Sized

import numpy as np

TH_HIGH = 100
TH_LOW = 50
HISTO_LENGTH = 30
DESCRIPTOR_BYTES = 32


@dataclass
class KeyPoint:
    """An image feature: position, scale, orientation and detector response."""

    x: float
    y: float
    size: float = 0.0
    angle: float = -1.0
    response: float = 0.0
    octave: int = 0

    @property
    def pt(self) -> tuple[float, float]:
        return (self.x, self.y)


def _descriptor_bytes(descriptor) -> bytes:
    if isinstance(descriptor, (bytes, bytearray, memoryview)):
        raw = bytes(descriptor)
    else:
        raw = np.asarray(descriptor, dtype=np.uint8).tobytes()
    if len(raw) != DESCRIPTOR_BYTES:
        raise ValueError(
            f"descriptor must be {DESCRIPTOR_BYTES} bytes, got {len(raw)}"
        )
    return raw


def descriptor_distance(a, b) -> int:
    """Hamming distance between two 256-bit ORB descriptors."""
    xa = int.from_bytes(_descriptor_bytes(a), "little")
    xb = int.from_bytes(_descriptor_bytes(b), "little")
    return (xa ^ xb).bit_count()


def compute_three_maxima(histogram: Sequence[Sized]) -> tuple[int, int, int]:
    """Indices of the three fullest bins; -1 where a bin is under 10% of the fullest."""
    max1 = max2 = max3 = 0
    ind1 = ind2 = ind3 = -1
    for i, bin_ in enumerate(histogram):
        s = len(bin_)
        if s > max1:
            max3, max2, max1 = max2, max1, s
            ind3, ind2, ind1 = ind2, ind1, i
        elif s > max2:
            max3, max2 = max2, s
            ind3, ind2 = ind2, i
        elif s > max3:
            max3 = s
            ind3 = i

    if max2 < 0.1 * max1:
        ind2 = ind3 = -1
    elif max3 < 0.1 * max1:
        ind3 = -1
    return ind1, ind2, ind3


def filter_by_rotation(histogram: Sequence[Sequence]) -> list:
    """Entries of every bin outside the three fullest ones, in bin order."""
    kept = set(compute_three_maxima(histogram))
    return [
        entry
        for i, bin_ in enumerate(histogram)
        if i not in kept
        for entry in bin_
    ]


def rotation_bin(angle1: float, angle2: float) -> int:
    """Histogram bin of the orientation difference between two keypoints."""
    rot = angle1 - angle2
    if rot < 0.0:
        rot += 360.0
    index = math.floor(rot * (1.0 / HISTO_LENGTH) + 0.5)
    if index == HISTO_LENGTH:
        index = 0
    return index


def radius_by_viewing_cos(view_cos: float) -> float:
    """Search window radius for a given cosine of the viewing angle."""
    return 2.5 if view_cos > 0.998 else 4.0


def check_dist_epipolar_line(kp1: KeyPoint, kp2: KeyPoint, f12, level_sigma2) -> bool:
    """Whether kp2 lies close enough to the epipolar line of kp1 under F12."""
    f = np.asarray(f12, dtype=float)
    a = kp1.x * f[0, 0] + kp1.y * f[1, 0] + f[2, 0]
    b = kp1.x * f[0, 1] + kp1.y * f[1, 1] + f[2, 1]
    c = kp1.x * f[0, 2] + kp1.y * f[1, 2] + f[2, 2]

    num = a * kp2.x + b * kp2.y + c
    den = a * a + b * b
    if den == 0:
        return False
    dsqr = num * num / den
    return bool(dsqr < 3.84 * level_sigma2[kp2.octave])