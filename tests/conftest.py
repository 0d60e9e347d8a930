import struct
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import pytest


def make_palette_bytes() -> bytes:
    raw = bytearray()
    for i in range(256):
        raw.extend((i, 255 - i, (i * 7) % 256))
    return bytes(raw)


def palette_rgb(index: int) -> Tuple[int, int, int]:
    return index, 255 - index, (index * 7) % 256


def build_wad(entries: Iterable[Tuple[str, bytes]], magic: bytes = b"IWAD") -> bytes:
    body = bytearray()
    directory: List[Tuple[int, int, str]] = []
    for name, data in entries:
        directory.append((12 + len(body), len(data), name))
        body.extend(data)
    out = bytearray(magic + struct.pack("<II", len(directory), 12 + len(body)))
    out.extend(body)
    for offset, size, name in directory:
        out.extend(struct.pack("<II8s", offset, size, name.encode("ascii")))
    return bytes(out)


def build_patch(
    width: int,
    height: int,
    columns: Sequence[Sequence[Tuple[int, Sequence[int]]]],
    left: int = 0,
    top: int = 0,
    column_offsets: Optional[Sequence[int]] = None,
) -> bytes:
    table_end = 8 + 4 * width
    offsets: List[int] = []
    body = bytearray()
    for posts in columns:
        offsets.append(table_end + len(body))
        for top_delta, pixels in posts:
            body.extend((top_delta, len(pixels), 0))
            body.extend(pixels)
            body.append(0)
        body.append(0xFF)
    if column_offsets is not None:
        offsets = list(column_offsets)
    header = struct.pack("<HHHH", width, height, left, top)
    return header + struct.pack("<" + "I" * width, *offsets) + bytes(body)


def build_sound(rate: int, samples: Sequence[int], fmt: int = 3, count: Optional[int] = None) -> bytes:
    declared = len(samples) if count is None else count
    return struct.pack("<HHI", fmt, rate, declared) + bytes(16) + bytes(samples)


def png_chunks(data: bytes) -> Dict[bytes, bytes]:
    assert data[:8] == b"\x89PNG\r\n\x1a\n"
    chunks: Dict[bytes, bytes] = {}
    pos = 8
    while pos + 12 <= len(data):
        (length,) = struct.unpack_from(">I", data, pos)
        chunk_type = data[pos + 4 : pos + 8]
        chunks.setdefault(chunk_type, data[pos + 8 : pos + 8 + length])
        pos += 12 + length
    return chunks


def grab_offsets(data: bytes) -> Tuple[int, int]:
    return struct.unpack(">ii", png_chunks(data)[b"grAb"])


@pytest.fixture
def palette_bytes() -> bytes:
    return make_palette_bytes()


@pytest.fixture
def troop_patch() -> bytes:
    return build_patch(3, 4, [[(0, [1, 2])], [], [(1, [7, 8, 9])]], left=1, top=3)


@pytest.fixture
def pistol_sound() -> bytes:
    return build_sound(11025, [10, 20, 30, 40])


@pytest.fixture
def sample_wad(palette_bytes: bytes, troop_patch: bytes, pistol_sound: bytes) -> bytes:
    return build_wad(
        [
            ("PLAYPAL", palette_bytes),
            ("DEMO1", b"\x01\x02\x03\x04\x05\x06\x07\x08\x09\x0a"),
            ("DSPISTOL", pistol_sound),
            ("S_START", b""),
            ("TROOA1", troop_patch),
            ("S_END", b""),
            ("ENDOOM", b"\x00" * 4),
        ]
    )
