"""
Tests for WebP re-encoding.
"""
import pytest
import io
import random
from PIL import Image
import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from media_service.utils.errors import EncodeError
from media_service.utils.image_processing import _prefilter, encode_image, encode_settings


def create_noisy_image(width, height, image_format='PNG', mode='RGB', seed=7):
    """Create a detailed (hard to compress) test image."""
    rng = random.Random(seed)
    bands = len(mode)
    pixels = bytes(rng.getrandbits(8) for _ in range(width * height * bands))
    img = Image.frombytes(mode, (width, height), pixels)
    buffer = io.BytesIO()
    img.save(buffer, format=image_format)
    return buffer.getvalue()


def create_photo_like_image(width=320, height=240):
    """Create a gradient with some noise, closer to a photo than pure noise."""
    rng = random.Random(3)
    img = Image.new('RGB', (width, height))
    img.putdata([
        ((x * 255) // width, (y * 255) // height, rng.randint(0, 255))
        for y in range(height)
        for x in range(width)
    ])
    buffer = io.BytesIO()
    img.save(buffer, format='JPEG', quality=95)
    return buffer.getvalue()


class TestEncodeSettings:
    """Tests for quality-dependent codec settings."""

    def test_alpha_quality_offset(self):
        assert encode_settings(80).alpha_quality == 70
        assert encode_settings(15).alpha_quality == 10
        assert encode_settings(1).alpha_quality == 10

    def test_smart_subsample_threshold(self):
        assert encode_settings(30).smart_subsample is True
        assert encode_settings(29).smart_subsample is False

    def test_strong_prefilter_below_50(self):
        settings = encode_settings(49)
        assert settings.saturation == 0.95
        assert settings.blur_radius > 0

    def test_light_prefilter_from_50(self):
        settings = encode_settings(50)
        assert settings.saturation == 0.98
        assert settings.blur_radius == 0

    def test_maximum_method(self):
        assert encode_settings(70).method == 6

    @pytest.mark.parametrize('quality', [0, 101, -5])
    def test_quality_out_of_range(self, quality):
        with pytest.raises(ValueError):
            encode_settings(quality)


class TestPrefilter:
    """Tests for the contrast and colour pass run before encoding."""

    def test_contrast_stretch_ignores_outlier_pixels(self):
        """A single black and a single white pixel do not stop the stretch."""
        img = Image.new('RGB', (100, 100))
        img.putdata([(100 + x // 2,) * 3 for y in range(100) for x in range(100)])
        img.putpixel((0, 0), (0, 0, 0))
        img.putpixel((99, 99), (255, 255, 255))

        result = _prefilter(img, encode_settings(80))

        assert result.getpixel((1, 50))[0] < 15
        assert result.getpixel((98, 50))[0] > 240

    def test_alpha_channel_untouched(self):
        img = Image.new('RGBA', (20, 20), (120, 60, 30, 77))
        result = _prefilter(img, encode_settings(40))
        assert result.mode == 'RGBA'
        assert result.getchannel('A').getextrema() == (77, 77)


class TestEncodeImage:
    """Tests for the encoder itself."""

    @pytest.mark.parametrize('quality', [1, 29, 49, 50, 100])
    def test_output_is_decodable_webp(self, quality):
        original = create_photo_like_image()
        encoded = encode_image(original, quality)

        assert encoded.size == len(encoded.data) > 0
        assert encoded.quality == quality

        output = Image.open(io.BytesIO(encoded.data))
        assert output.format == 'WEBP'
        assert output.size == (320, 240)

    def test_png_input_normalized_to_webp(self):
        encoded = encode_image(create_noisy_image(150, 150), 80)
        assert Image.open(io.BytesIO(encoded.data)).format == 'WEBP'

    def test_alpha_preserved(self):
        original = create_noisy_image(120, 120, mode='RGBA')
        encoded = encode_image(original, 60)

        output = Image.open(io.BytesIO(encoded.data))
        assert output.mode == 'RGBA'

    def test_metadata_stripped(self):
        img = Image.new('RGB', (200, 200), (10, 120, 200))
        exif = img.getexif()
        exif[0x010F] = 'TestCamera'  # Make
        buffer = io.BytesIO()
        img.save(buffer, format='JPEG', exif=exif.tobytes())

        encoded = encode_image(buffer.getvalue(), 90)

        output = Image.open(io.BytesIO(encoded.data))
        assert 'exif' not in output.info
        assert 'icc_profile' not in output.info

    def test_deterministic(self):
        original = create_photo_like_image()
        assert encode_image(original, 42).data == encode_image(original, 42).data

    def test_size_shrinks_with_quality(self):
        original = create_photo_like_image()
        sizes = [encode_image(original, quality).size for quality in (95, 60, 25, 5)]
        assert sizes == sorted(sizes, reverse=True)

    def test_corrupt_input_raises_encode_error(self):
        with pytest.raises(EncodeError):
            encode_image(b'definitely not an image', 80)

    def test_truncated_input_raises_encode_error(self):
        original = create_photo_like_image()
        with pytest.raises(EncodeError):
            encode_image(original[:len(original) // 2], 80)
