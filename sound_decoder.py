"""Decode PCM sound lumps and re-encode them as RIFF/WAVE."""
from __future__ import annotations

import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import numpy as np

from wad_errors import MalformedHeader

SOUND_HEADER_FMT = "<HHI"
SOUND_HEADER_SIZE = struct.calcsize(SOUND_HEADER_FMT)  # 8
SOUND_SAMPLES_OFFSET = 0x18

WAV_HEADER_SIZE = 44
WAV_FORMAT_PCM = 1


@dataclass(frozen=True)
class Sound:
    sample_rate: int
    sample_count: int
    samples: bytes
    format: int = 3

    @property
    def duration(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return self.sample_count / self.sample_rate

    def to_array(self) -> np.ndarray:
        return np.frombuffer(self.samples, dtype=np.uint8).copy()

    def to_wav(self, exact_data_size: bool = False) -> bytes:
        """Encode as an 8-bit mono PCM RIFF/WAVE file.

        The data chunk size field holds ``sample_count * 2`` unless
        ``exact_data_size`` is set; the original player was built around that
        value and consumers tolerate it.
        """
        sample_bytes = len(self.samples)
        data_size = sample_bytes if exact_data_size else sample_bytes * 2
        header = struct.pack(
            "<4sI8sIHHIIHH4sI",
            b"RIFF",
            WAV_HEADER_SIZE - 8 + sample_bytes,
            b"WAVEfmt ",
            16,
            WAV_FORMAT_PCM,
            1,
            self.sample_rate,
            self.sample_rate,  # byte rate: one byte per mono frame
            1,
            8,
            b"data",
            data_size,
        )
        return header + self.samples


def decode_sound(data: Any, name: Optional[str] = None) -> Sound:
    view = memoryview(data)
    size = len(view)
    if size < SOUND_HEADER_SIZE:
        raise MalformedHeader(f"sound header needs {SOUND_HEADER_SIZE} bytes, lump has {size}", lump=name)
    fmt, rate, count = struct.unpack_from(SOUND_HEADER_FMT, view, 0)
    end = SOUND_SAMPLES_OFFSET + count
    if size < end:
        raise MalformedHeader(f"header declares {count} samples but lump has only {size} bytes", lump=name)
    return Sound(
        sample_rate=rate,
        sample_count=count,
        samples=bytes(view[SOUND_SAMPLES_OFFSET:end]),
        format=fmt,
    )


def write_wav(path: Path, sound: Sound, exact_data_size: bool = False) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("wb") as handle:
        handle.write(sound.to_wav(exact_data_size=exact_data_size))
