"""Decode column/post encoded patch lumps into RGBA rasters."""
from __future__ import annotations

import struct
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Sequence, Tuple, Union

import numpy as np
from PIL import Image

from wad_errors import MalformedColumn, MalformedHeader, MissingPalette

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"

PALETTE_ENTRIES = 256
PALETTE_SIZE = PALETTE_ENTRIES * 3

PATCH_HEADER_FMT = "<HHHH"
PATCH_HEADER_SIZE = struct.calcsize(PATCH_HEADER_FMT)  # 8
COLUMN_OFFSET_SIZE = 4
MAX_PATCH_DIMENSION = 4096

POST_TERMINATOR = 0xFF
POST_HEADER_SIZE = 3  # top_delta, length, pad
MIN_POST_BYTES = 4

PaletteLike = Union[bytes, bytearray, memoryview, np.ndarray, Sequence[Tuple[int, int, int]]]


@dataclass(frozen=True)
class Patch:
    width: int
    height: int
    left_offset: int
    top_offset: int
    pixels: bytes

    def to_array(self) -> np.ndarray:
        """Return the raster as a writable ``(height, width, 4)`` uint8 array."""
        flat = np.frombuffer(self.pixels, dtype=np.uint8)
        return flat.reshape(self.height, self.width, 4).copy()

    def to_image(self) -> Image.Image:
        if self.width == 0 or self.height == 0:
            return Image.new("RGBA", (self.width, self.height))
        return Image.frombytes("RGBA", (self.width, self.height), self.pixels)

    def thumbnail(self, size: int) -> Image.Image:
        """Scale the patch so its shorter side fills a ``size`` square and centre it.

        The longer side overflows the square and is cropped evenly on both ends.
        """
        if size <= 0:
            raise ValueError(f"Thumbnail size must be positive, got {size}")
        canvas = Image.new("RGBA", (size, size), (0, 0, 0, 0))
        if self.width == 0 or self.height == 0:
            return canvas
        ratio = size / min(self.width, self.height)
        scaled_w = max(1, round(self.width * ratio))
        scaled_h = max(1, round(self.height * ratio))
        Resampling = getattr(Image, "Resampling", Image)
        scaled = self.to_image().resize((scaled_w, scaled_h), Resampling.NEAREST)
        canvas.paste(scaled, (size // 2 - scaled_w // 2, size // 2 - scaled_h // 2))
        return canvas


def palette_from_bytes(data: Union[bytes, bytearray, memoryview]) -> np.ndarray:
    if len(data) < PALETTE_SIZE:
        raise MissingPalette(
            f"palette needs {PALETTE_SIZE} bytes, got {len(data)}",
            lump="PLAYPAL",
        )
    raw = bytes(data[:PALETTE_SIZE])
    return np.frombuffer(raw, dtype=np.uint8).reshape(PALETTE_ENTRIES, 3)


def _palette_array(palette: PaletteLike) -> np.ndarray:
    if isinstance(palette, (bytes, bytearray, memoryview)):
        return palette_from_bytes(palette)
    colors = np.asarray(palette, dtype=np.uint8)
    if colors.shape != (PALETTE_ENTRIES, 3):
        raise ValueError(f"Palette must hold {PALETTE_ENTRIES} RGB triples, got shape {colors.shape}")
    return colors


def decode_patch(data: Any, palette: PaletteLike, name: Optional[str] = None) -> Patch:
    """Decode a patch lump.

    ``data`` may be any bytes-like object. Every read is checked against the
    lump length; posts that would read past the lump or write past the raster
    raise ``MalformedColumn``.
    """
    view = memoryview(data)
    size = len(view)
    if size < PATCH_HEADER_SIZE:
        raise MalformedHeader(f"patch header needs {PATCH_HEADER_SIZE} bytes, lump has {size}", lump=name)
    width, height, left_off, top_off = struct.unpack_from(PATCH_HEADER_FMT, view, 0)
    if width > MAX_PATCH_DIMENSION or height > MAX_PATCH_DIMENSION:
        raise MalformedHeader(f"patch size {width}x{height} exceeds {MAX_PATCH_DIMENSION}", lump=name)
    expected_table = PATCH_HEADER_SIZE + width * COLUMN_OFFSET_SIZE
    if size < expected_table:
        raise MalformedHeader(
            f"column table for width {width} needs {expected_table} bytes, lump has {size}",
            lump=name,
        )
    column_offsets = struct.unpack_from("<" + "I" * width, view, PATCH_HEADER_SIZE)
    colors = _palette_array(palette)

    raster = np.zeros((height, width, 4), dtype=np.uint8)
    for x, offset in enumerate(column_offsets):
        if offset >= size:
            raise MalformedColumn(f"column {x} starts at {offset}, past the end of the lump ({size} bytes)", lump=name)
        ptr = offset
        while size - ptr >= MIN_POST_BYTES:
            top_delta = view[ptr]
            if top_delta == POST_TERMINATOR:
                break
            count = view[ptr + 1]
            start = ptr + POST_HEADER_SIZE
            end = start + count
            if end > size:
                raise MalformedColumn(
                    f"column {x}: post at {ptr} reads {count} pixels past the end of the lump",
                    lump=name,
                )
            if count:
                if top_delta + count > height:
                    raise MalformedColumn(
                        f"column {x}: post rows {top_delta}..{top_delta + count - 1} exceed height {height}",
                        lump=name,
                    )
                indices = np.frombuffer(view[start:end], dtype=np.uint8)
                raster[top_delta : top_delta + count, x, :3] = colors[indices]
                raster[top_delta : top_delta + count, x, 3] = 255
            ptr = end + 1  # skip trailing pad
    return Patch(
        width=width,
        height=height,
        left_offset=left_off,
        top_offset=top_off,
        pixels=raster.tobytes(),
    )


def write_png(path: Path, patch: Patch) -> None:
    """Write ``patch`` as an RGBA PNG with a ``grAb`` chunk carrying its offsets."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("wb") as handle:
        handle.write(PNG_MAGIC)

        def write_chunk(chunk_type: bytes, chunk_data: bytes) -> None:
            handle.write(struct.pack(">I", len(chunk_data)))
            handle.write(chunk_type)
            handle.write(chunk_data)
            crc = zlib.crc32(chunk_type + chunk_data) & 0xFFFFFFFF
            handle.write(struct.pack(">I", crc))

        ihdr = struct.pack(">IIBBBBB", patch.width, patch.height, 8, 6, 0, 0, 0)
        write_chunk(b"IHDR", ihdr)
        write_chunk(b"grAb", struct.pack(">ii", int(patch.left_offset), int(patch.top_offset)))

        row_stride = patch.width * 4
        raw = bytearray()
        for y in range(patch.height):
            raw.append(0)  # filter type 0
            start = y * row_stride
            raw.extend(patch.pixels[start : start + row_stride])
        write_chunk(b"IDAT", zlib.compress(bytes(raw), level=9))
        write_chunk(b"IEND", b"")
