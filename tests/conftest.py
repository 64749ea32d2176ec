"""Pytest fixtures: in-memory images built with Pillow and a fixed clock."""

from datetime import datetime
from io import BytesIO

import pytest
from PIL import Image

from metastamp import config as config_module

FIXED_NOW = datetime(2024, 6, 1, 12, 0, 0)


def make_image_bytes(fmt: str = "JPEG", size=(32, 24), color="red", mode="RGB") -> bytes:
    img = Image.new(mode, size, color=color)
    out = BytesIO()
    img.save(out, fmt)
    return out.getvalue()


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_image_bytes("JPEG")


@pytest.fixture
def png_bytes() -> bytes:
    """RGBA PNG, so the pipeline has to drop the alpha channel."""
    return make_image_bytes("PNG", mode="RGBA", color=(0, 128, 255, 128))


@pytest.fixture
def fixed_now():
    return lambda: FIXED_NOW


@pytest.fixture(autouse=True)
def reset_config_cache():
    """Each test sees settings freshly loaded from its own environment."""
    config_module._config = None
    yield
    config_module._config = None
