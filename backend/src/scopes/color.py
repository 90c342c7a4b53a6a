"""Color helpers — luma weights and RGB to HSL.

The HSL conversion is not used by the scope reductions. It is kept for
hue-tinted rendering of scope output (coloring vectorscope dots).
"""

import numpy as np

# Luma weights (R, G, B)
REC709_WEIGHTS = (0.2126, 0.7152, 0.0722)
REC601_WEIGHTS = (0.299, 0.587, 0.114)


def luma(
    r: np.ndarray, g: np.ndarray, b: np.ndarray, weights=REC709_WEIGHTS
) -> np.ndarray:
    """Weighted luma as float64. Inputs are 0-255 sample arrays."""
    wr, wg, wb = weights
    return (
        wr * r.astype(np.float64)
        + wg * g.astype(np.float64)
        + wb * b.astype(np.float64)
    )


def round_half_up(values: np.ndarray) -> np.ndarray:
    """Round halves toward +inf (np.round rounds half to even)."""
    return np.floor(values + 0.5)


def rgb_to_hsl(r: int, g: int, b: int) -> tuple[float, float, float]:
    """Convert one 0-255 RGB triple to HSL, each component in [0, 1].

    Achromatic input (max == min) returns h = s = 0.
    """
    r, g, b = r / 255.0, g / 255.0, b / 255.0
    cmax = max(r, g, b)
    cmin = min(r, g, b)
    lightness = (cmax + cmin) / 2

    if cmax == cmin:
        return 0.0, 0.0, lightness

    d = cmax - cmin
    if lightness > 0.5:
        saturation = d / (2 - cmax - cmin)
    else:
        saturation = d / (cmax + cmin)

    if cmax == r:
        hue = (g - b) / d + (6 if g < b else 0)
    elif cmax == g:
        hue = (b - r) / d + 2
    else:
        hue = (r - g) / d + 4

    return hue / 6, saturation, lightness


def rgb_to_hsl_array(rgb: np.ndarray) -> np.ndarray:
    """Vectorized rgb_to_hsl over an (..., 3) uint8 array.

    Returns a float64 array of the same leading shape with (h, s, l) in the
    last axis. Channel priority on ties matches rgb_to_hsl (r, then g, then b).
    """
    rgb_f = rgb[..., :3].astype(np.float64) / 255.0
    r, g, b = rgb_f[..., 0], rgb_f[..., 1], rgb_f[..., 2]

    cmax = rgb_f.max(axis=-1)
    cmin = rgb_f.min(axis=-1)
    delta = cmax - cmin
    lightness = (cmax + cmin) / 2

    chroma = delta > 0
    safe_delta = np.where(chroma, delta, 1.0)

    denom = np.where(lightness > 0.5, 2 - cmax - cmin, cmax + cmin)
    safe_denom = np.where(chroma, denom, 1.0)
    saturation = np.where(chroma, delta / safe_denom, 0.0)

    mask_r = chroma & (cmax == r)
    mask_g = chroma & (cmax == g) & ~mask_r
    mask_b = chroma & ~mask_r & ~mask_g

    hue = np.zeros_like(delta)
    hue_r = (g - b) / safe_delta + np.where(g < b, 6.0, 0.0)
    hue_g = (b - r) / safe_delta + 2
    hue_b = (r - g) / safe_delta + 4
    hue[mask_r] = hue_r[mask_r]
    hue[mask_g] = hue_g[mask_g]
    hue[mask_b] = hue_b[mask_b]

    return np.stack([hue / 6, saturation, lightness], axis=-1)
