"""
Unit tests for pixel buffers and the image preprocessor.
"""

import os
import sys
import pytest
import numpy as np
import cv2
from PIL import Image

# Add project root to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from preprocessing import (
    BrightnessDistribution,
    HistogramData,
    ImagePreprocessor,
    PixelBuffer,
    PixelFormat,
    UnreadableImageError,
    create_preprocessing_pipeline
)
from utils.cache import ProcessingCache


def create_uniform_image(value=128, size=(100, 100)):
    """Create a flat gray image of the given (width, height)."""
    return PixelBuffer.from_array(np.full((size[1], size[0]), value, dtype=np.uint8))


def create_horizon_image(size=(100, 100)):
    """Dark upper half, bright lower half."""
    w, h = size
    image = np.zeros((h, w), dtype=np.uint8)
    image[h // 2:, :] = 255
    return PixelBuffer.from_array(image)


def create_split_image(size=(100, 100)):
    """Black left half, white right half."""
    w, h = size
    image = np.zeros((h, w), dtype=np.uint8)
    image[:, w // 2:] = 255
    return PixelBuffer.from_array(image)


def create_square_image(size=(200, 200)):
    """White 60x60 square on black, in RGB."""
    image = np.zeros((size[1], size[0], 3), dtype=np.uint8)
    cv2.rectangle(image, (70, 70), (129, 129), (255, 255, 255), -1)
    return PixelBuffer.from_array(image)


UNREADABLE = PixelBuffer(10, 10, PixelFormat.RGB8, b"\x00" * 7)


class TestPixelBuffer:
    """Tests for the pixel buffer value type."""

    def test_to_array_shapes(self):
        gray = PixelBuffer(4, 3, PixelFormat.GRAY8, bytes(12))
        rgba = PixelBuffer(4, 3, PixelFormat.RGBA8, bytes(48))

        assert gray.to_array().shape == (3, 4)
        assert rgba.to_array().shape == (3, 4, 4)

    def test_array_is_read_only(self):
        array = create_uniform_image().to_array()

        with pytest.raises(ValueError):
            array[0, 0] = 1

    def test_length_mismatch_is_unreadable(self):
        with pytest.raises(UnreadableImageError):
            UNREADABLE.to_array()

    def test_fingerprint_tracks_content(self):
        a = create_uniform_image(100)
        b = create_uniform_image(100)
        c = create_uniform_image(101)

        assert a.fingerprint == b.fingerprint
        assert a.fingerprint != c.fingerprint

    def test_from_array_infers_format(self):
        assert PixelBuffer.from_array(np.zeros((2, 2), np.uint8)).pixel_format is PixelFormat.GRAY8
        assert PixelBuffer.from_array(np.zeros((2, 2, 3), np.uint8)).pixel_format is PixelFormat.RGB8
        assert PixelBuffer.from_array(np.zeros((2, 2, 4), np.uint8)).pixel_format is PixelFormat.RGBA8

        with pytest.raises(ValueError):
            PixelBuffer.from_array(np.zeros((2, 2, 2), np.uint8))

    def test_from_image(self):
        buffer = PixelBuffer.from_image(Image.new('RGB', (8, 6), (10, 20, 30)))

        assert buffer.size == (8, 6)
        assert buffer.pixel_format is PixelFormat.RGB8
        assert tuple(buffer.to_array()[0, 0]) == (10, 20, 30)


class TestBrightnessDistribution:
    """Tests for histogram classification."""

    def _histogram(self, low, mid, high):
        histogram = [0] * 256
        histogram[10] = low
        histogram[128] = mid
        histogram[200] = high
        return histogram

    @pytest.mark.parametrize("low, mid, high, expected", [
        (60, 20, 20, BrightnessDistribution.UNDEREXPOSED),
        (20, 20, 60, BrightnessDistribution.OVEREXPOSED),
        (10, 80, 10, BrightnessDistribution.NORMAL),
        (40, 20, 40, BrightnessDistribution.HIGH_CONTRAST),
    ])
    def test_classification(self, low, mid, high, expected):
        assert BrightnessDistribution.from_histogram(self._histogram(low, mid, high), 100) is expected

    def test_empty_histogram_is_normal(self):
        assert BrightnessDistribution.from_histogram([], 0) is BrightnessDistribution.NORMAL


class TestImagePreprocessor:
    """Tests for the preprocessor operations."""

    @pytest.fixture
    def preprocessor(self):
        return ImagePreprocessor({'max_workers': 2})

    def test_grayscale_conversion(self, preprocessor):
        red = PixelBuffer.from_array(np.full((4, 4, 3), (255, 0, 0), dtype=np.uint8))
        gray = preprocessor.convert_to_grayscale(red)

        assert gray.pixel_format is PixelFormat.GRAY8
        assert gray.size == (4, 4)
        assert int(gray.to_array()[0, 0]) == 76

    def test_grayscale_input_is_returned_unchanged(self, preprocessor):
        image = create_uniform_image()
        assert preprocessor.convert_to_grayscale(image) is image

    def test_contrast_enhancement(self, preprocessor):
        enhanced = preprocessor.enhance_contrast(create_uniform_image(150), amount=1.5)
        assert int(enhanced.to_array()[0, 0]) == 161

        saturated = preprocessor.enhance_contrast(create_uniform_image(250), amount=3.0)
        assert int(saturated.to_array()[0, 0]) == 255

    def test_contrast_keeps_alpha(self, preprocessor):
        rgba = PixelBuffer.from_array(np.full((2, 2, 4), (150, 150, 150, 77), dtype=np.uint8))
        enhanced = preprocessor.enhance_contrast(rgba, amount=1.5)

        assert enhanced.pixel_format is PixelFormat.RGBA8
        assert tuple(enhanced.to_array()[0, 0]) == (161, 161, 161, 77)

    def test_edges_of_uniform_image_are_empty(self, preprocessor):
        edges = preprocessor.detect_edges(create_uniform_image())

        assert edges.size == (100, 100)
        assert edges.to_array().max() == 0

    def test_edges_follow_the_horizon(self, preprocessor):
        edges = preprocessor.detect_edges(create_horizon_image()).to_array()

        assert edges[49:51, :].min() > 0.2 * 255
        assert edges[:40, :].max() == 0
        assert edges[60:, :].max() == 0

    def test_sobel_gradients(self, preprocessor):
        gradients = preprocessor.apply_sobel_filter(create_horizon_image())

        assert gradients.vertical[49, 50] == pytest.approx(1.0)
        assert gradients.vertical[50, 50] == pytest.approx(1.0)
        assert gradients.vertical[20, 50] == 0
        assert gradients.horizontal.max() == 0
        assert gradients.magnitude.max() == pytest.approx(1.0)
        assert not gradients.magnitude.flags.writeable

    def test_histogram_of_uniform_image(self, preprocessor):
        histogram = preprocessor.analyze_histogram(create_uniform_image())

        assert histogram.total == 100 * 100
        assert histogram.brightness[128] == 100 * 100
        assert histogram.average_brightness == pytest.approx(128 / 255)
        assert histogram.distribution is BrightnessDistribution.NORMAL

    def test_histogram_of_split_image(self, preprocessor):
        histogram = preprocessor.analyze_histogram(create_split_image())

        assert histogram.brightness[0] == 5000
        assert histogram.brightness[255] == 5000
        assert histogram.distribution is BrightnessDistribution.HIGH_CONTRAST
        assert 0.0 <= histogram.average_brightness <= 1.0

    def test_histogram_is_independent_of_chunking(self):
        image = create_square_image((97, 53))

        single = ImagePreprocessor({'max_workers': 1}).analyze_histogram(image)
        chunked = ImagePreprocessor({'max_workers': 7}).analyze_histogram(image)

        assert single == chunked
        assert chunked.total == 97 * 53

    def test_uniform_image_has_no_salient_regions(self, preprocessor):
        assert preprocessor.detect_salient_regions(create_uniform_image()) == []

    def test_salient_region_covers_bright_square(self, preprocessor):
        regions = preprocessor.detect_salient_regions(create_square_image())

        assert len(regions) == 1
        region = regions[0]
        assert 65 <= region.min_x <= 70
        assert 130 <= region.max_x <= 135
        assert region.center.x == pytest.approx(100, abs=2)
        assert region.center.y == pytest.approx(100, abs=2)

    def test_unreadable_input_returns_defaults(self, preprocessor):
        assert preprocessor.convert_to_grayscale(UNREADABLE) is None
        assert preprocessor.enhance_contrast(UNREADABLE) is None
        assert preprocessor.detect_edges(UNREADABLE) is None
        assert preprocessor.apply_sobel_filter(UNREADABLE) is None
        assert preprocessor.detect_salient_regions(UNREADABLE) == []
        assert preprocessor.analyze_histogram(UNREADABLE) == HistogramData.empty()
        assert preprocessor.analyze_histogram(None).average_brightness == 0.5

    def test_large_images_are_readable(self, preprocessor):
        wide = PixelBuffer.from_array(np.full((2, 20000), 128, dtype=np.uint8))

        assert preprocessor.is_readable(wide)
        assert preprocessor.analyze_histogram(wide).total == 40000

    def test_size_limit_is_configurable(self):
        limited = ImagePreprocessor({'max_image_size': (50, 50)})

        assert not limited.is_readable(create_uniform_image())
        assert limited.analyze_histogram(create_uniform_image()) == HistogramData.empty()

    def test_results_are_memoized(self, preprocessor):
        image = create_horizon_image()

        first = preprocessor.detect_edges(image)
        assert preprocessor.detect_edges(image) is first
        assert preprocessor.detect_edges(create_horizon_image()) is first
        assert preprocessor.detect_edges(image, threshold=0.2) is not first

    def test_clear_cache(self, preprocessor):
        image = create_horizon_image()
        first = preprocessor.detect_edges(image)

        preprocessor.clear_cache()

        assert len(preprocessor.cache) == 0
        assert preprocessor.detect_edges(image) is not first

    def test_factory_shares_cache(self):
        cache = ProcessingCache()
        first = create_preprocessing_pipeline({'edge_threshold': 0.2}, cache)
        second = create_preprocessing_pipeline(cache=cache)

        assert first.config['edge_threshold'] == 0.2
        assert second.cache is cache

        edges = first.detect_edges(create_horizon_image())
        assert second.detect_edges(create_horizon_image(), threshold=0.2) is edges
