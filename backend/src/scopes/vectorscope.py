"""Vectorscope scope — 256x256 chrominance occupancy grid.

Two coordinate policies exist and are deliberately kept apart; they place
the same pixel at different cells.

rec709:
    Y = Rec.709 luma, U = (b - Y) * 0.5389, V = (r - Y) * 0.6350
    x = round(V / 128 * 128 + 128), y = round(-U / 128 * 128 + 128)
simple:
    Y = Rec.601 luma, U = round(b - Y), V = round(r - Y)
    x = floor(U * 128 / 255 + 128), y = floor(V * 128 / 255 + 128)

Pixels landing outside [0, 256) on either axis are discarded.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable

import numpy as np

from scopes.color import REC601_WEIGHTS, REC709_WEIGHTS, luma, round_half_up
from scopes.image import Image

SIZE = 256
HALF = SIZE / 2

# Rec.709 chroma scale factors
U_SCALE = 0.5389
V_SCALE = 0.6350


class VectorscopePolicy(Enum):
    REC709 = "rec709"
    SIMPLE = "simple"


@dataclass(frozen=True)
class Vectorscope:
    """Flat row-major grid, cell (x, y) at ``y * size + x``."""

    policy: VectorscopePolicy
    data: np.ndarray
    size: int = SIZE

    def cell(self, x: int, y: int) -> int:
        return int(self.data[y * self.size + x])

    def to_dict(self) -> dict:
        return {
            "policy": self.policy.value,
            "size": self.size,
            "data": self.data.tolist(),
        }


CoordFn = Callable[[np.ndarray, np.ndarray, np.ndarray], tuple[np.ndarray, np.ndarray]]


def _rec709_coords(r, g, b) -> tuple[np.ndarray, np.ndarray]:
    y = luma(r, g, b, REC709_WEIGHTS)
    u = (b - y) * U_SCALE
    v = (r - y) * V_SCALE
    x_pos = round_half_up((v / 128) * HALF + HALF)
    y_pos = round_half_up((-u / 128) * HALF + HALF)
    return x_pos, y_pos


def _simple_coords(r, g, b) -> tuple[np.ndarray, np.ndarray]:
    y = luma(r, g, b, REC601_WEIGHTS)
    u = round_half_up(b - y)
    v = round_half_up(r - y)
    x_pos = np.floor(u * (HALF / 255) + HALF)
    y_pos = np.floor(v * (HALF / 255) + HALF)
    return x_pos, y_pos


COORDINATE_POLICIES: dict[VectorscopePolicy, CoordFn] = {
    VectorscopePolicy.REC709: _rec709_coords,
    VectorscopePolicy.SIMPLE: _simple_coords,
}


def compute_vectorscope(
    image: Image, policy: VectorscopePolicy = VectorscopePolicy.REC709
) -> Vectorscope:
    """Project every pixel to (x, y) with ``policy`` and count occupancy."""
    frame = image.as_array()
    r = frame[:, :, 0].ravel().astype(np.float64)
    g = frame[:, :, 1].ravel().astype(np.float64)
    b = frame[:, :, 2].ravel().astype(np.float64)

    x_pos, y_pos = COORDINATE_POLICIES[policy](r, g, b)

    inside = (x_pos >= 0) & (x_pos < SIZE) & (y_pos >= 0) & (y_pos < SIZE)
    index = y_pos[inside].astype(np.int64) * SIZE + x_pos[inside].astype(np.int64)
    data = np.bincount(index, minlength=SIZE * SIZE).astype(np.uint32)
    return Vectorscope(policy=policy, data=data)
