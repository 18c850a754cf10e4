"""
Tests for the header-only image size read.
"""

import io

import pytest
from PIL import Image

from nodeflow.agents.image_crop.cropper import read_image_size


def png_chunks(size: tuple[int, int], chunk_size: int = 512) -> list[bytes]:
    # Noise keeps the PNG from compressing into a single chunk
    buffer = io.BytesIO()
    Image.effect_noise(size, 64).save(buffer, format="PNG")
    data = buffer.getvalue()
    return [data[i:i + chunk_size] for i in range(0, len(data), chunk_size)]


class CountingStream:
    def __init__(self, chunks: list[bytes]):
        self.chunks = chunks
        self.consumed = 0

    async def __aiter__(self):
        for chunk in self.chunks:
            self.consumed += 1
            yield chunk


class TestReadImageSize:
    @pytest.mark.asyncio
    async def test_stops_after_header(self):
        chunks = png_chunks((200, 100))
        stream = CountingStream(chunks)

        assert await read_image_size(stream.__aiter__()) == (200, 100)
        assert len(chunks) > 2
        assert stream.consumed < len(chunks)

    @pytest.mark.asyncio
    async def test_single_chunk(self):
        data = b"".join(png_chunks((32, 48)))
        stream = CountingStream([data])
        assert await read_image_size(stream.__aiter__()) == (32, 48)

    @pytest.mark.asyncio
    async def test_not_an_image(self):
        stream = CountingStream([b"<html>not found</html>"] * 3)
        with pytest.raises(OSError):
            await read_image_size(stream.__aiter__())
