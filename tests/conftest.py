import io

import pytest
from PIL import Image

from schemas import UploadedAsset


def make_png(width: int, height: int) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGBA", (width, height), (255, 0, 0, 255)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def png_asset():
    def factory(width=64, height=64, filename="image.png", content_type="image/png"):
        return UploadedAsset(filename=filename, content_type=content_type, data=make_png(width, height))
    return factory
