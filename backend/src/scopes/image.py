"""Image model — immutable RGBA buffer plus decoding from IPC payloads."""

import base64
import binascii
from dataclasses import dataclass, field

import numpy as np

from scopes.errors import MalformedImage
from security import validate_image_dimensions

CHANNELS = 4


@dataclass(frozen=True)
class Image:
    """Packed interleaved RGBA uint8 image. Alpha is carried but never read.

    Construction validates the buffer against ``width * height * 4`` so the
    reductions can index without bounds checks.
    """

    width: int
    height: int
    pixels: bytes = field(repr=False)

    def __post_init__(self):
        if isinstance(self.width, bool) or not isinstance(self.width, int):
            raise MalformedImage(f"width must be an integer, got {self.width!r}")
        if isinstance(self.height, bool) or not isinstance(self.height, int):
            raise MalformedImage(f"height must be an integer, got {self.height!r}")
        if self.width <= 0 or self.height <= 0:
            raise MalformedImage(
                f"image dimensions must be positive, got {self.width}x{self.height}"
            )
        errors = validate_image_dimensions(self.width, self.height)
        if errors:
            raise MalformedImage("; ".join(errors))
        expected = self.width * self.height * CHANNELS
        if len(self.pixels) != expected:
            raise MalformedImage(
                f"buffer length {len(self.pixels)} does not match "
                f"{self.width}x{self.height}x{CHANNELS} = {expected}"
            )

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    def as_array(self) -> np.ndarray:
        """Read-only (H, W, 4) uint8 view over the buffer. No copy."""
        arr = np.frombuffer(self.pixels, dtype=np.uint8)
        arr = arr.reshape(self.height, self.width, CHANNELS)
        arr.flags.writeable = False
        return arr

    @classmethod
    def from_array(cls, frame: np.ndarray) -> "Image":
        """Build from an (H, W, 4) uint8 array (copies into an owned buffer)."""
        if frame.ndim != 3 or frame.shape[2] != CHANNELS:
            raise MalformedImage(f"expected (H, W, 4) array, got shape {frame.shape}")
        if frame.dtype != np.uint8:
            raise MalformedImage(f"expected uint8 samples, got {frame.dtype}")
        height, width = frame.shape[:2]
        return cls(int(width), int(height), np.ascontiguousarray(frame).tobytes())

    @classmethod
    def from_message(cls, payload) -> "Image":
        """Decode ``{"width", "height", "pixels"}`` as sent over IPC.

        ``pixels`` may be a base64 string (what the frontend sends), raw
        bytes, or a flat list of ints in 0-255.
        """
        if not isinstance(payload, dict):
            raise MalformedImage("missing image")
        width = payload.get("width")
        height = payload.get("height")
        raw = payload.get("pixels")
        if raw is None:
            raise MalformedImage("missing pixels")

        if isinstance(raw, str):
            try:
                pixels = base64.b64decode(raw, validate=True)
            except (binascii.Error, ValueError):
                raise MalformedImage("pixels is not valid base64") from None
        elif isinstance(raw, (bytes, bytearray, memoryview)):
            pixels = bytes(raw)
        elif isinstance(raw, list):
            try:
                arr = np.asarray(raw) if raw else np.zeros(0, dtype=np.uint8)
            except ValueError:
                raise MalformedImage(
                    "pixels list must be a flat list of integers"
                ) from None
            if arr.ndim != 1 or not np.issubdtype(arr.dtype, np.integer):
                raise MalformedImage("pixels list must be a flat list of integers")
            if arr.size and (arr.min() < 0 or arr.max() > 255):
                raise MalformedImage("pixel samples must be in 0-255")
            pixels = arr.astype(np.uint8).tobytes()
        else:
            raise MalformedImage(f"unsupported pixels type: {type(raw).__name__}")

        return cls(width, height, pixels)
