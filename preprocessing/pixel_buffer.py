"""
Pixel Buffer Types

Immutable image containers handed to the analysis engine by the presentation
layer, and the brightness summary derived from them once per analysis.
"""

import hashlib
from dataclasses import dataclass, field
from enum import Enum
from functools import cached_property
from typing import Optional, Tuple

import numpy as np
from PIL import Image


class UnreadableImageError(ValueError):
    """Raised when a buffer cannot be interpreted as an image."""


class PixelFormat(Enum):
    """Supported 8-bit-per-channel pixel layouts."""

    GRAY8 = "gray8"
    RGB8 = "rgb8"
    RGBA8 = "rgba8"
    BGR8 = "bgr8"
    BGRA8 = "bgra8"

    @property
    def channels(self) -> int:
        return _CHANNEL_COUNTS[self]

    @property
    def has_alpha(self) -> bool:
        return self in (PixelFormat.RGBA8, PixelFormat.BGRA8)


_CHANNEL_COUNTS = {
    PixelFormat.GRAY8: 1,
    PixelFormat.RGB8: 3,
    PixelFormat.RGBA8: 4,
    PixelFormat.BGR8: 3,
    PixelFormat.BGRA8: 4,
}

_PIL_MODES = {
    'L': PixelFormat.GRAY8,
    'RGB': PixelFormat.RGB8,
    'RGBA': PixelFormat.RGBA8,
}


@dataclass(frozen=True)
class PixelBuffer:
    """
    Raw image owned by the caller.

    The engine never mutates a buffer; every processing step derives a new one.
    Rows are stored top to bottom without padding.
    """

    width: int
    height: int
    pixel_format: PixelFormat
    data: bytes = field(repr=False)

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    @cached_property
    def fingerprint(self) -> str:
        """Content hash used to key memoised results."""

        digest = hashlib.blake2b(digest_size=16)
        digest.update(f"{self.width}x{self.height}:{self.pixel_format.value}:".encode())
        digest.update(self.data or b"")
        return digest.hexdigest()

    def to_array(self) -> np.ndarray:
        """
        Read-only numpy view of the pixels.

        Returns:
            Array of shape (H, W) for GRAY8 or (H, W, C) otherwise, dtype uint8

        Raises:
            UnreadableImageError: If dimensions or byte length are inconsistent
        """

        if not isinstance(self.pixel_format, PixelFormat):
            raise UnreadableImageError(f"Unknown pixel format: {self.pixel_format!r}")

        if self.width <= 0 or self.height <= 0:
            raise UnreadableImageError(f"Invalid dimensions: {self.width}x{self.height}")

        channels = self.pixel_format.channels
        expected = self.width * self.height * channels

        if self.data is None or len(self.data) != expected:
            actual = 0 if self.data is None else len(self.data)
            raise UnreadableImageError(f"Expected {expected} bytes, got {actual}")

        array = np.frombuffer(self.data, dtype=np.uint8)

        if channels == 1:
            return array.reshape(self.height, self.width)

        return array.reshape(self.height, self.width, channels)

    @classmethod
    def from_array(cls, array: np.ndarray,
                   pixel_format: Optional[PixelFormat] = None) -> "PixelBuffer":
        """
        Build a buffer from a numpy image.

        Args:
            array: (H, W) or (H, W, C) image; non-uint8 data is clipped to [0, 255]
            pixel_format: Layout of the channels (inferred from C when omitted)
        """

        array = np.asarray(array)
        if array.dtype != np.uint8:
            array = np.clip(array, 0, 255).astype(np.uint8)

        if array.ndim == 3 and array.shape[2] == 1:
            array = array[:, :, 0]

        if pixel_format is None:
            if array.ndim == 2:
                pixel_format = PixelFormat.GRAY8
            elif array.ndim == 3 and array.shape[2] == 3:
                pixel_format = PixelFormat.RGB8
            elif array.ndim == 3 and array.shape[2] == 4:
                pixel_format = PixelFormat.RGBA8
            else:
                raise ValueError(f"Cannot infer pixel format for shape {array.shape}")

        height, width = array.shape[:2]
        return cls(width, height, pixel_format, np.ascontiguousarray(array).tobytes())

    @classmethod
    def from_image(cls, image: Image.Image) -> "PixelBuffer":
        """Build a buffer from a Pillow image."""

        if image.mode not in _PIL_MODES:
            image = image.convert('RGB')

        width, height = image.size
        return cls(width, height, _PIL_MODES[image.mode], image.tobytes())


class BrightnessDistribution(Enum):
    UNDEREXPOSED = "Underexposed"
    NORMAL = "Normal"
    OVEREXPOSED = "Overexposed"
    HIGH_CONTRAST = "High Contrast"

    @property
    def description(self) -> str:
        return self.value

    @classmethod
    def from_histogram(cls, histogram, total_pixels: int) -> "BrightnessDistribution":
        """Classify a 256-bucket histogram by the share of dark, mid and bright pixels."""

        if total_pixels <= 0 or len(histogram) < 256:
            return cls.NORMAL

        low_ratio = sum(histogram[0:85]) / total_pixels
        mid_ratio = sum(histogram[85:170]) / total_pixels
        high_ratio = sum(histogram[170:256]) / total_pixels

        if low_ratio > 0.5:
            return cls.UNDEREXPOSED
        elif high_ratio > 0.5:
            return cls.OVEREXPOSED
        elif mid_ratio > 0.6:
            return cls.NORMAL
        else:
            return cls.HIGH_CONTRAST


@dataclass(frozen=True)
class HistogramData:
    """256-bucket brightness histogram with its summary values."""

    brightness: Tuple[int, ...]
    distribution: BrightnessDistribution
    average_brightness: float

    @property
    def total(self) -> int:
        return sum(self.brightness)

    @classmethod
    def empty(cls) -> "HistogramData":
        return cls(brightness=(), distribution=BrightnessDistribution.NORMAL, average_brightness=0.5)

    def to_dict(self):
        return {
            'brightness': list(self.brightness),
            'distribution': self.distribution.value,
            'average_brightness': self.average_brightness
        }
