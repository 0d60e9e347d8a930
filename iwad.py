"""IWAD container reader.

Header layout (12 bytes):
    4s  identification  "IWAD"
    I   numlumps
    I   infotableofs

Lump directory entry (16 bytes each):
    I   filepos
    I   size
    8s  name  (NUL-padded ASCII)

Lumps between ``S_START``/``S_END`` (or ``S1_START``..``S9_END``) markers are
sprite patches. Outside those ranges a lump is sniffed as a sound from its first
bytes. Decoding is lazy and memoised per container.
"""
from __future__ import annotations

import logging
import re
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Tuple, Union

import numpy as np

import patch_decoder
import sound_decoder
from patch_decoder import Patch
from sound_decoder import Sound
from wad_errors import (
    FormatError,
    InvalidSignature,
    LumpNotFound,
    MissingPalette,
    TruncatedDirectoryEntry,
    TruncatedHeader,
)

IWAD_MAGIC = b"IWAD"

HEADER_FMT = "<4sII"
HEADER_SIZE = struct.calcsize(HEADER_FMT)  # 12

DIR_ENTRY_FMT = "<II8s"
DIR_ENTRY_SIZE = struct.calcsize(DIR_ENTRY_FMT)  # 16

PALETTE_LUMP = "PLAYPAL"

# Applied with fullmatch so names such as "S_START\n" stay ordinary lumps.
SPRITE_START_RE = re.compile(r"S[0-9]?_START")
SPRITE_END_RE = re.compile(r"S[0-9]?_END")

SOUND_SNIFF_MIN_LENGTH = 8
DMX_SOUND_FORMAT = 3
SOUND_RATE_STEP = 11025

KIND_PATCH = "patch"
KIND_SOUND = "sound"
KIND_DATA = "data"


@dataclass(frozen=True)
class Lump:
    name: str
    offset: int
    length: int
    index: int

    @property
    def end(self) -> int:
        return self.offset + self.length


def _starts_with_ds(head: bytes) -> bool:
    return head[:2] == b"DS"


def _is_dmx_sound(head: bytes) -> bool:
    fmt, rate = struct.unpack_from("<HH", head, 0)
    return fmt == DMX_SOUND_FORMAT and rate > 0 and rate % SOUND_RATE_STEP == 0


# Evaluated in order; the first match classifies the lump as a sound.
SOUND_PREDICATES: Tuple[Callable[[bytes], bool], ...] = (_starts_with_ds, _is_dmx_sound)


def is_sound_lump(head: bytes, length: int) -> bool:
    if length <= SOUND_SNIFF_MIN_LENGTH:
        return False
    return any(predicate(head) for predicate in SOUND_PREDICATES)


def decode_lump_name(raw: bytes) -> str:
    return raw.split(b"\x00", 1)[0].decode("ascii", errors="replace")


class IwadContainer:
    """A parsed IWAD: the raw buffer, its lump index and the palette.

    Instances are built by :func:`parse` and never change afterwards, apart
    from the decode cache they own.
    """

    def __init__(
        self,
        data: bytes,
        lumps: Dict[str, Lump],
        palette: np.ndarray,
        lump_count: int,
        patch_names: List[str],
        sound_names: List[str],
    ) -> None:
        self._data = data
        self._view = memoryview(data)
        self._lumps = lumps
        self._ordered = tuple(sorted(lumps.values(), key=lambda lump: lump.index))
        self._palette = palette
        self._palette.setflags(write=False)
        self.lump_count = lump_count
        self._patch_names = tuple(dict.fromkeys(patch_names))
        self._sound_names = tuple(dict.fromkeys(sound_names))
        self._patch_set = frozenset(self._patch_names)
        self._sound_set = frozenset(self._sound_names)
        self._cache: Dict[Tuple[str, str], Union[Patch, Sound]] = {}

    def __len__(self) -> int:
        return len(self._lumps)

    def __contains__(self, name: object) -> bool:
        return name in self._lumps

    def __iter__(self) -> Iterator[Lump]:
        return iter(self._ordered)

    def __repr__(self) -> str:
        return (
            f"IwadContainer(lumps={len(self._lumps)}, patches={len(self._patch_names)}, "
            f"sounds={len(self._sound_names)})"
        )

    @property
    def size(self) -> int:
        return len(self._data)

    @property
    def palette(self) -> np.ndarray:
        """The ``(256, 3)`` read-only uint8 palette from ``PLAYPAL``."""
        return self._palette

    def patch_names(self) -> Tuple[str, ...]:
        return self._patch_names

    def sound_names(self) -> Tuple[str, ...]:
        return self._sound_names

    def lump_names(self) -> Tuple[str, ...]:
        return tuple(lump.name for lump in self._ordered)

    def lump(self, name: str) -> Lump:
        try:
            return self._lumps[name]
        except KeyError:
            raise LumpNotFound(name) from None

    def kind(self, name: str) -> str:
        self.lump(name)
        if name in self._patch_set:
            return KIND_PATCH
        if name in self._sound_set:
            return KIND_SOUND
        return KIND_DATA

    def lump_view(self, name: str) -> memoryview:
        lump = self.lump(name)
        return self._view[lump.offset : lump.end]

    def read_lump(self, name: str) -> bytes:
        return bytes(self.lump_view(name))

    def decode_patch(self, name: str) -> Patch:
        key = (KIND_PATCH, name)
        cached = self._cache.get(key)
        if cached is None:
            logging.getLogger(__name__).debug("Decoding patch %s", name)
            cached = patch_decoder.decode_patch(self.lump_view(name), self._palette, name=name)
            self._cache[key] = cached
        return cached  # type: ignore[return-value]

    def decode_sound(self, name: str) -> Sound:
        key = (KIND_SOUND, name)
        cached = self._cache.get(key)
        if cached is None:
            logging.getLogger(__name__).debug("Decoding sound %s", name)
            cached = sound_decoder.decode_sound(self.lump_view(name), name=name)
            self._cache[key] = cached
        return cached  # type: ignore[return-value]

    def decode_all_patches(self) -> Iterator[Tuple[str, Union[Patch, FormatError]]]:
        for name in self._patch_names:
            try:
                yield name, self.decode_patch(name)
            except FormatError as exc:
                yield name, exc

    def decode_all_sounds(self) -> Iterator[Tuple[str, Union[Sound, FormatError]]]:
        for name in self._sound_names:
            try:
                yield name, self.decode_sound(name)
            except FormatError as exc:
                yield name, exc

    def clear_cache(self) -> None:
        self._cache.clear()


def parse(buffer: Union[bytes, bytearray, memoryview]) -> IwadContainer:
    """Parse an IWAD held in memory.

    Raises ``InvalidSignature``, ``TruncatedHeader``,
    ``TruncatedDirectoryEntry`` or ``MissingPalette``; no partial container is
    ever returned.
    """
    data = buffer if isinstance(buffer, bytes) else bytes(buffer)
    total = len(data)

    magic = data[:4]
    if magic != IWAD_MAGIC:
        raise InvalidSignature(f"Bad input file header: {magic!r}")
    if total < HEADER_SIZE:
        raise TruncatedHeader(f"Header needs {HEADER_SIZE} bytes, file has {total}")
    _, lump_count, dir_offset = struct.unpack_from(HEADER_FMT, data, 0)
    if dir_offset + DIR_ENTRY_SIZE > total:
        raise TruncatedHeader(f"Bad info table offset: {dir_offset} (file is {total} bytes)")

    lumps: Dict[str, Lump] = {}
    patch_names: List[str] = []
    sound_names: List[str] = []
    in_sprites = False
    position = 0
    offset = dir_offset
    while offset + DIR_ENTRY_SIZE <= total:
        filepos, size, raw_name = struct.unpack_from(DIR_ENTRY_FMT, data, offset)
        offset += DIR_ENTRY_SIZE
        position += 1
        name = decode_lump_name(raw_name)
        if filepos + size > total:
            raise TruncatedDirectoryEntry(
                f"entry {position} covers bytes {filepos}..{filepos + size}, file is {total} bytes",
                lump=name,
            )

        if SPRITE_START_RE.fullmatch(name):
            in_sprites = True
            continue
        if SPRITE_END_RE.fullmatch(name):
            in_sprites = False
            continue

        lumps[name] = Lump(name=name, offset=filepos, length=size, index=position)
        if in_sprites:
            patch_names.append(name)
        elif is_sound_lump(data[filepos : filepos + 4], size):
            sound_names.append(name)

    palette_lump = lumps.get(PALETTE_LUMP)
    if palette_lump is None:
        raise MissingPalette("no PLAYPAL lump in directory", lump=PALETTE_LUMP)
    palette = patch_decoder.palette_from_bytes(data[palette_lump.offset : palette_lump.end]).copy()

    logging.getLogger(__name__).debug(
        "Parsed IWAD: %d directory entries (header declares %d), %d patches, %d sounds",
        position,
        lump_count,
        len(patch_names),
        len(sound_names),
    )
    return IwadContainer(
        data=data,
        lumps=lumps,
        palette=palette,
        lump_count=lump_count,
        patch_names=patch_names,
        sound_names=sound_names,
    )


def load(path: Path) -> IwadContainer:
    with path.open("rb") as handle:
        return parse(handle.read())
