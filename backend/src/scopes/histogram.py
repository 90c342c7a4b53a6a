"""Histogram scope — per-channel intensity counts."""

from dataclasses import dataclass

import numpy as np

from scopes.image import Image

BINS = 256


@dataclass(frozen=True)
class Histogram:
    """Three 256-bin uint32 count arrays. Index = sample intensity."""

    r: np.ndarray
    g: np.ndarray
    b: np.ndarray

    def to_dict(self) -> dict:
        return {"r": self.r.tolist(), "g": self.g.tolist(), "b": self.b.tolist()}


def _channel_counts(samples: np.ndarray) -> np.ndarray:
    return np.bincount(samples.ravel(), minlength=BINS)[:BINS].astype(np.uint32)


def compute_histogram(image: Image) -> Histogram:
    """
    Count pixels per intensity for each of R, G, B.

    Args:
        image: validated RGBA image

    Returns:
        Histogram whose channels each sum to width * height.
    """
    frame = image.as_array()
    return Histogram(
        r=_channel_counts(frame[:, :, 0]),
        g=_channel_counts(frame[:, :, 1]),
        b=_channel_counts(frame[:, :, 2]),
    )
