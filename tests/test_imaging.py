"""Tests for the image codec."""

from __future__ import annotations

from datetime import datetime, timezone
from io import BytesIO

import pytest
from PIL import Image

from conftest import make_image
from prompt_vault.core import imaging
from prompt_vault.core.errors import DecodeError, InvalidTypeError, TooLargeError, ValidationError
from prompt_vault.core.imaging import ImageUpload


def _open(data: bytes) -> Image.Image:
    return Image.open(BytesIO(data))


class TestValidate:
    def test_accepts_allowed_types(self):
        for content_type in ("image/jpeg", "image/png", "image/webp"):
            imaging.validate(ImageUpload("a", content_type, b"x"))

    def test_rejects_gif(self):
        with pytest.raises(InvalidTypeError, match="image/gif"):
            imaging.validate(ImageUpload("a.gif", "image/gif", b"GIF89a"))

    def test_rejects_oversized(self):
        upload = ImageUpload("a.png", "image/png", b"x" * 11)
        with pytest.raises(TooLargeError) as exc:
            imaging.validate(upload, max_bytes=10)
        assert exc.value.size == 11
        assert isinstance(exc.value, ValidationError)

    def test_default_ceiling_is_eight_mib(self):
        with pytest.raises(TooLargeError):
            imaging.validate(ImageUpload("big.png", "image/png", bytes(10 * 1024 * 1024)))
        imaging.validate(ImageUpload("ok.png", "image/png", bytes(2 * 1024 * 1024)))

    def test_limit_is_inclusive(self):
        imaging.validate(ImageUpload("a.png", "image/png", b"x" * 10), max_bytes=10)

    def test_from_path_guesses_type(self, tmp_path):
        path = tmp_path / "cat.png"
        path.write_bytes(make_image((8, 8)))
        upload = ImageUpload.from_path(path)
        assert upload.filename == "cat.png"
        assert upload.content_type == "image/png"
        assert upload.size == path.stat().st_size


class TestCompress:
    def test_bounds_longer_side(self):
        out = _open(imaging.compress(make_image((1024, 768))))
        assert out.format == "JPEG"
        assert out.size == (512, 384)

    def test_portrait_keeps_aspect(self):
        out = _open(imaging.compress(make_image((300, 1200)), max_dimension=400))
        assert out.size == (100, 400)

    def test_never_upscales(self):
        out = _open(imaging.compress(make_image((100, 50))))
        assert out.size == (100, 50)

    def test_flattens_transparency_onto_white(self):
        out = _open(imaging.compress(make_image((64, 64), mode="RGBA")))
        assert out.mode == "RGB"
        r, g, b = out.getpixel((32, 32))
        assert min(r, g, b) > 240

    def test_accepts_jpeg_and_webp_input(self):
        for fmt in ("JPEG", "WEBP"):
            out = _open(imaging.compress(make_image((600, 600), fmt=fmt)))
            assert out.size == (512, 512)

    def test_corrupt_bytes_raise_decode_error(self):
        with pytest.raises(DecodeError):
            imaging.compress(b"definitely not an image")

    def test_quality_mapping(self):
        assert imaging._jpeg_quality(0.6) == 60
        assert imaging._jpeg_quality(1.0) == 95
        assert imaging._jpeg_quality(0.0) == 1

    def test_lower_quality_is_smaller(self):
        # Noise compresses poorly, so quality shows up in the byte count
        noisy = Image.effect_noise((256, 256), 80).convert("RGB")
        buf = BytesIO()
        noisy.save(buf, format="PNG")
        high = imaging.compress(buf.getvalue(), quality=0.9)
        low = imaging.compress(buf.getvalue(), quality=0.2)
        assert len(low) < len(high)


class TestNaming:
    def test_sanitize_name(self):
        assert imaging.sanitize_name("My Photo!!.PNG") == "my-photo"
        assert imaging.sanitize_name("cyber_punk.v2.webp") == "cyber_punk.v2"

    def test_sanitize_name_truncates(self):
        assert len(imaging.sanitize_name("a" * 300 + ".png")) == 100

    def test_build_storage_path(self):
        now = datetime(2025, 1, 1, tzinfo=timezone.utc)
        path = imaging.build_storage_path("user-1", "Alley At Night.png", now)
        assert path == "user-1/1735689600000-alley-at-night.jpg"

    def test_build_storage_path_falls_back_to_image(self):
        now = datetime(2025, 1, 1, tzinfo=timezone.utc)
        assert imaging.build_storage_path("u", "???.png", now) == "u/1735689600000-image.jpg"
