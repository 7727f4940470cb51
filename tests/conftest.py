import pytest

from fakes import make_image


@pytest.fixture
def png_bytes() -> bytes:
    return make_image("PNG")


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_image("JPEG")
