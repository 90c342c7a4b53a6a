"""Waveform scope — per-column level counts, as luma or RGB parade.

Grids are flat row-major uint32 arrays of ``width * 256`` counters. Row 0
is level 255 so the grid draws top-down with bright values on top.
"""

from dataclasses import dataclass
from enum import Enum

import numpy as np

from scopes.color import REC709_WEIGHTS, luma, round_half_up
from scopes.image import Image

LEVELS = 256


class WaveformMode(Enum):
    LUMA = "luma"
    PARADE = "parade"


@dataclass(frozen=True)
class Waveform:
    """Single luma grid."""

    width: int
    data: np.ndarray
    height: int = LEVELS

    def cell(self, x: int, level: int) -> int:
        return int(self.data[(LEVELS - 1 - level) * self.width + x])

    def to_dict(self) -> dict:
        return {
            "mode": WaveformMode.LUMA.value,
            "width": self.width,
            "height": self.height,
            "data": self.data.tolist(),
        }


@dataclass(frozen=True)
class Parade:
    """Three per-channel grids sharing one geometry."""

    width: int
    r: np.ndarray
    g: np.ndarray
    b: np.ndarray
    height: int = LEVELS

    def to_dict(self) -> dict:
        return {
            "mode": WaveformMode.PARADE.value,
            "width": self.width,
            "height": self.height,
            "r": self.r.tolist(),
            "g": self.g.tolist(),
            "b": self.b.tolist(),
        }


def _accumulate(levels: np.ndarray, width: int) -> np.ndarray:
    """Count (column, level) pairs into an inverted row-major grid.

    Levels outside [0, 255] are dropped.
    """
    columns = np.broadcast_to(np.arange(width, dtype=np.int64), levels.shape)
    levels = levels.astype(np.int64)
    in_range = (levels >= 0) & (levels < LEVELS)
    index = (LEVELS - 1 - levels[in_range]) * width + columns[in_range]
    return np.bincount(index, minlength=LEVELS * width).astype(np.uint32)


def compute_luma_waveform(image: Image) -> Waveform:
    """Rec.709 luma per pixel, rounded half up, counted per column."""
    frame = image.as_array()
    y = luma(frame[:, :, 0], frame[:, :, 1], frame[:, :, 2], REC709_WEIGHTS)
    levels = round_half_up(y)
    return Waveform(width=image.width, data=_accumulate(levels, image.width))


def compute_parade(image: Image) -> Parade:
    """Raw R, G, B samples counted per column, one grid per channel."""
    frame = image.as_array()
    return Parade(
        width=image.width,
        r=_accumulate(frame[:, :, 0], image.width),
        g=_accumulate(frame[:, :, 1], image.width),
        b=_accumulate(frame[:, :, 2], image.width),
    )


def compute_waveform(
    image: Image, mode: WaveformMode = WaveformMode.PARADE
) -> Waveform | Parade:
    if mode is WaveformMode.LUMA:
        return compute_luma_waveform(image)
    return compute_parade(image)
