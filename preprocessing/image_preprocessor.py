"""
Image Preprocessing Module for the Composition Engine

Derives the low-level evidence every detector works from: grayscale and
contrast-enhanced buffers, a smoothed edge buffer, directional Sobel gradients,
the brightness histogram and a coarse salient-region proposal.

Every result is memoised per input fingerprint and parameters. Unreadable
buffers never raise out of this module; each operation returns its default.
"""

import math
import cv2
import numpy as np
from scipy import ndimage
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Tuple
import logging

from utils.cache import ProcessingCache
from utils.concurrency import CancellationToken, default_worker_count, parallel_map
from utils.geometry import Rect
from utils.validation import ImageValidator

from .pixel_buffer import (
    BrightnessDistribution,
    HistogramData,
    PixelBuffer,
    PixelFormat,
    UnreadableImageError
)

logger = logging.getLogger(__name__)

SOBEL_HORIZONTAL_KERNEL = np.array([[-1, 0, 1],
                                    [-2, 0, 2],
                                    [-1, 0, 1]], dtype=np.float32)

SOBEL_VERTICAL_KERNEL = np.array([[-1, -2, -1],
                                  [0, 0, 0],
                                  [1, 2, 1]], dtype=np.float32)

# Largest absolute response of either kernel on 8-bit input
SOBEL_NORMALIZER = 4.0 * 255.0

_GRAY_CONVERSIONS = {
    PixelFormat.RGB8: cv2.COLOR_RGB2GRAY,
    PixelFormat.RGBA8: cv2.COLOR_RGBA2GRAY,
    PixelFormat.BGR8: cv2.COLOR_BGR2GRAY,
    PixelFormat.BGRA8: cv2.COLOR_BGRA2GRAY,
}


class GradientBuffers(NamedTuple):
    """Absolute Sobel responses normalised to [0, 1] (read-only float32)."""

    horizontal: np.ndarray
    vertical: np.ndarray
    magnitude: np.ndarray


def _freeze(array: np.ndarray) -> np.ndarray:
    array.flags.writeable = False
    return array


def _histogram_chunk(flat: np.ndarray, start: int, end: int) -> Tuple[np.ndarray, int]:
    chunk = flat[start:end]
    return np.bincount(chunk, minlength=256), int(chunk.sum(dtype=np.int64))


class ImagePreprocessor:
    """
    Pixel and edge preprocessing for composition analysis.

    Features:
    - Grayscale conversion and contrast enhancement
    - Gaussian-smoothed edge extraction
    - Directional Sobel gradients computed as two parallel branches
    - Chunked parallel brightness histogram
    - Contrast-driven salient region proposal
    - Bounded, thread-safe memoisation with explicit clearing
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None,
                 cache: Optional[ProcessingCache] = None):
        """
        Initialize the ImagePreprocessor.

        Args:
            config: Overrides for the default preprocessing parameters
            cache: Shared result cache (a private one is created when omitted)
        """
        self.config = {**self._get_default_config(), **(config or {})}
        self.cache = cache if cache is not None else ProcessingCache(self.config['cache_size'])
        self.validator = ImageValidator(max_size=self.config['max_image_size'])

        logger.info(f"ImagePreprocessor initialized with cache_size = {self.cache.max_entries}")

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration for the preprocessor"""

        return {
            'edge_threshold': 0.1,
            'blur_radius': 1.0,
            'contrast_amount': 1.5,
            'salient_contrast_amount': 2.0,
            'salient_threshold': 0.5,
            'min_region_fraction': 0.01,
            'max_salient_regions': 3,
            'cache_size': 128,
            'max_image_size': None,
            'max_workers': None
        }

    def is_readable(self, image: Optional[PixelBuffer]) -> bool:
        return self.validator.is_valid(image)

    def _memoize(self, operation: str, image: Optional[PixelBuffer], params: Tuple,
                 compute: Callable[[np.ndarray], Any], default: Any = None) -> Any:
        """Run ``compute`` on the decoded pixels once per (operation, image, params)."""

        if not self.validator.is_valid(image):
            logger.warning(f"{operation}: unreadable pixel buffer, returning default")
            return default

        def run():
            try:
                return compute(image.to_array())
            except (UnreadableImageError, cv2.error, ValueError) as e:
                logger.warning(f"{operation} failed: {str(e)}")
                return None

        key = ProcessingCache.make_key(operation, image.fingerprint, *params)
        result = self.cache.get_or_compute(key, run)

        return default if result is None else result

    def _gray_array(self, image: PixelBuffer) -> Optional[np.ndarray]:
        gray = self.convert_to_grayscale(image)
        return None if gray is None else gray.to_array()

    # Grayscale conversion

    def convert_to_grayscale(self, image: PixelBuffer) -> Optional[PixelBuffer]:
        """
        Convert a buffer to 8-bit luminance.

        Args:
            image: Input buffer in any supported format

        Returns:
            GRAY8 buffer, or None if the input is unreadable
        """

        if self.is_readable(image) and image.pixel_format is PixelFormat.GRAY8:
            return image

        def compute(array: np.ndarray) -> PixelBuffer:
            gray = cv2.cvtColor(array, _GRAY_CONVERSIONS[image.pixel_format])
            return PixelBuffer.from_array(gray, PixelFormat.GRAY8)

        return self._memoize('grayscale', image, (), compute)

    # Contrast enhancement

    def enhance_contrast(self, image: PixelBuffer, amount: Optional[float] = None) -> Optional[PixelBuffer]:
        """
        Stretch every colour channel around mid-gray.

        Args:
            image: Input buffer
            amount: Contrast multiplier (1.0 leaves the image unchanged)

        Returns:
            Buffer in the input's format, or None if the input is unreadable
        """

        amount = self.config['contrast_amount'] if amount is None else float(amount)

        def compute(array: np.ndarray) -> PixelBuffer:
            values = array.astype(np.float32)
            color = values[..., :3] if image.pixel_format.has_alpha else values

            adjusted = np.clip(np.rint((color - 127.5) * amount + 127.5), 0, 255).astype(np.uint8)

            if image.pixel_format.has_alpha:
                adjusted = np.dstack([adjusted, array[..., 3]])

            return PixelBuffer.from_array(adjusted, image.pixel_format)

        return self._memoize('contrast', image, (amount,), compute)

    # Edge detection

    def detect_edges(self, image: PixelBuffer, threshold: Optional[float] = None) -> Optional[PixelBuffer]:
        """
        Edge-intensity buffer of the image.

        A Gaussian blur suppresses noise before the gradient magnitude is taken;
        the magnitude is then scaled by ``threshold * 10``.

        Args:
            image: Input buffer
            threshold: Edge threshold controlling the intensity scale

        Returns:
            GRAY8 edge buffer, or None if the input is unreadable
        """

        threshold = self.config['edge_threshold'] if threshold is None else float(threshold)
        radius = self.config['blur_radius']

        def compute(_: np.ndarray) -> Optional[PixelBuffer]:
            gray = self._gray_array(image)
            if gray is None:
                return None

            blurred = cv2.GaussianBlur(gray, (0, 0), sigmaX=radius, borderType=cv2.BORDER_REPLICATE)
            grad_x = cv2.Sobel(blurred, cv2.CV_32F, 1, 0, ksize=3, borderType=cv2.BORDER_REPLICATE)
            grad_y = cv2.Sobel(blurred, cv2.CV_32F, 0, 1, ksize=3, borderType=cv2.BORDER_REPLICATE)

            magnitude = cv2.magnitude(grad_x, grad_y) / SOBEL_NORMALIZER
            intensity = np.clip(magnitude * threshold * 10.0, 0.0, 1.0)

            return PixelBuffer.from_array(np.rint(intensity * 255.0), PixelFormat.GRAY8)

        return self._memoize('edges', image, (threshold, radius), compute)

    # Sobel gradients

    def apply_sobel_filter(self, image: PixelBuffer,
                           cancel_token: Optional[CancellationToken] = None) -> Optional[GradientBuffers]:
        """
        Directional gradients of the grayscale image.

        The horizontal and vertical kernels run as two independent units; the
        magnitude buffer is their additive composite.

        Args:
            image: Input buffer
            cancel_token: Optional token to abort the computation

        Returns:
            GradientBuffers, or None if the input is unreadable
        """

        def compute(_: np.ndarray) -> Optional[GradientBuffers]:
            gray = self._gray_array(image)
            if gray is None:
                return None
            source = gray.astype(np.float32)

            def convolve(kernel: np.ndarray) -> np.ndarray:
                response = cv2.filter2D(source, cv2.CV_32F, kernel, borderType=cv2.BORDER_REPLICATE)
                return np.abs(response) / SOBEL_NORMALIZER

            horizontal, vertical = parallel_map(
                convolve, (SOBEL_HORIZONTAL_KERNEL, SOBEL_VERTICAL_KERNEL),
                max_workers=2, cancel_token=cancel_token
            )
            magnitude = np.clip(horizontal + vertical, 0.0, 1.0)

            return GradientBuffers(_freeze(horizontal), _freeze(vertical), _freeze(magnitude))

        return self._memoize('sobel', image, (), compute)

    # Histogram analysis

    def analyze_histogram(self, image: PixelBuffer,
                          cancel_token: Optional[CancellationToken] = None) -> HistogramData:
        """
        Brightness histogram of the grayscale image.

        The pixels are split into one contiguous chunk per worker; each chunk is
        counted independently and the partial histograms are summed.

        Args:
            image: Input buffer
            cancel_token: Optional token to abort the computation

        Returns:
            HistogramData (the empty default for unreadable input)
        """

        workers = self.config['max_workers'] or default_worker_count()

        def compute(_: np.ndarray) -> Optional[HistogramData]:
            gray = self._gray_array(image)
            if gray is None:
                return None

            flat = gray.reshape(-1)
            pixel_count = flat.size
            chunk_size = max(1, math.ceil(pixel_count / workers))
            bounds = [(start, min(start + chunk_size, pixel_count))
                      for start in range(0, pixel_count, chunk_size)]

            chunks = parallel_map(lambda b: _histogram_chunk(flat, *b), bounds,
                                  max_workers=workers, cancel_token=cancel_token)

            combined = np.zeros(256, dtype=np.int64)
            total_brightness = 0
            for counts, brightness_sum in chunks:
                combined += counts
                total_brightness += brightness_sum

            histogram = tuple(int(count) for count in combined)
            average = total_brightness / pixel_count / 255.0

            logger.debug(f"Histogram over {pixel_count} pixels in {len(bounds)} chunks")

            return HistogramData(
                brightness=histogram,
                distribution=BrightnessDistribution.from_histogram(histogram, pixel_count),
                average_brightness=float(average)
            )

        return self._memoize('histogram', image, (), compute, default=HistogramData.empty())

    # Saliency detection

    def detect_salient_regions(self, image: PixelBuffer) -> List[Rect]:
        """
        Coarse proposal of visually important rectangles.

        High local contrast in a contrast-boosted grayscale image is
        thresholded, closed into blobs and boxed. Largest regions come first.

        Args:
            image: Input buffer

        Returns:
            List of rectangles (empty for featureless or unreadable input)
        """

        amount = self.config['salient_contrast_amount']
        threshold = self.config['salient_threshold']
        min_fraction = self.config['min_region_fraction']
        max_regions = self.config['max_salient_regions']

        def compute(_: np.ndarray) -> Optional[Tuple[Rect, ...]]:
            gray = self.convert_to_grayscale(image)
            enhanced = self.enhance_contrast(gray, amount=amount) if gray is not None else None
            if enhanced is None:
                return None

            pixels = enhanced.to_array()
            h, w = pixels.shape[:2]

            kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (3, 3))
            local_contrast = cv2.morphologyEx(pixels, cv2.MORPH_GRADIENT, kernel)
            mask = (local_contrast >= threshold * 255.0).astype(np.uint8)

            # Merge nearby contrast fragments into blobs
            close_size = max(3, int(min(w, h) * 0.05) | 1)
            close_kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (close_size, close_size))
            mask = cv2.morphologyEx(mask, cv2.MORPH_CLOSE, close_kernel)

            labels, count = ndimage.label(mask)
            min_area = min_fraction * w * h

            regions = []
            for found in ndimage.find_objects(labels):
                if found is None:
                    continue
                rows, cols = found
                rect = Rect(float(cols.start), float(rows.start),
                            float(cols.stop - cols.start), float(rows.stop - rows.start))
                if rect.area >= min_area:
                    regions.append(rect)

            regions.sort(key=lambda r: (-r.area, r.y, r.x))
            logger.debug(f"Salient regions: {len(regions)} of {count} components kept")

            return tuple(regions[:max_regions])

        result = self._memoize('salient', image, (amount, threshold, min_fraction, max_regions),
                               compute, default=())
        return list(result)

    # Cache management

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.info("ImagePreprocessor cache cleared")


def create_preprocessing_pipeline(config: Optional[Dict] = None,
                                  cache: Optional[ProcessingCache] = None) -> ImagePreprocessor:
    """
    Factory function to create a configured preprocessor.

    Args:
        config: Configuration dictionary with preprocessing parameters
        cache: Optional shared result cache

    Returns:
        Configured ImagePreprocessor instance
    """

    return ImagePreprocessor(config=config, cache=cache)
