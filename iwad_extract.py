#!/usr/bin/env python3
"""List the lumps of an IWAD, or export its sprite patches as PNG and its sounds as WAV."""
from __future__ import annotations

import argparse
import configparser
import logging
import os
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Tuple

import iwad
from iwad import IwadContainer
from patch_decoder import write_png
from sound_decoder import write_wav
from wad_errors import FormatError

DEFAULT_OUTPUT_DIR = Path("extracted")
SETTINGS_SECTION = "export"


@dataclass
class ExportSettings:
    output_dir: Path = DEFAULT_OUTPUT_DIR
    thumbnail_size: Optional[int] = None
    exact_wav_size: bool = False


def config_root() -> Path:
    if sys.platform.startswith("win"):
        base = os.environ.get("APPDATA")
        if base:
            return Path(base) / "iwad-extract"
        return Path.home() / "AppData" / "Roaming" / "iwad-extract"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "iwad-extract"
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "iwad-extract"
    return Path.home() / ".config" / "iwad-extract"


def default_config_path() -> Path:
    return config_root() / "settings.ini"


def load_settings(path: Optional[Path]) -> ExportSettings:
    settings = ExportSettings()
    if path is None or not path.is_file():
        return settings
    parser = configparser.ConfigParser()
    try:
        parser.read(path, encoding="utf-8")
    except (configparser.Error, OSError, UnicodeDecodeError) as exc:
        logging.warning("Ignoring unreadable settings file %s: %s", path, exc)
        return settings
    if not parser.has_section(SETTINGS_SECTION):
        return settings
    section = parser[SETTINGS_SECTION]

    output_dir = section.get("output_dir", "").strip()
    if output_dir:
        settings.output_dir = Path(output_dir).expanduser()

    try:
        thumbnail_size = section.getint("thumbnail_size", fallback=None)
    except ValueError:
        logging.warning("Invalid thumbnail_size in %s; ignoring.", path)
        thumbnail_size = None
    if thumbnail_size is not None and thumbnail_size <= 0:
        logging.warning("thumbnail_size must be positive in %s; ignoring.", path)
        thumbnail_size = None
    settings.thumbnail_size = thumbnail_size

    try:
        settings.exact_wav_size = section.getboolean("exact_wav_size", fallback=False)
    except ValueError:
        logging.warning("Invalid exact_wav_size in %s; ignoring.", path)
    return settings


def positive_int(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value}")
    return number


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Read an IWAD, then list its lumps or export the sprite patches it contains as PNG "
            "(with grAb offsets) and its sound effects as WAV."
        )
    )
    parser.add_argument("input_path", type=Path, help="Path to the IWAD file.")
    parser.add_argument(
        "--list",
        action="store_true",
        help="Print every lump with its directory position, offset, length and kind, then exit.",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help=f"Directory that receives patches/ and sounds/. Defaults to ./{DEFAULT_OUTPUT_DIR}.",
    )
    parser.add_argument("--skip-patches", action="store_true", help="Do not export sprite patches.")
    parser.add_argument("--skip-sounds", action="store_true", help="Do not export sounds.")
    parser.add_argument(
        "--thumbnail-size",
        type=positive_int,
        default=None,
        help="Write patches as square thumbnails of this size instead of at native resolution.",
    )
    parser.add_argument(
        "--exact-wav-size",
        action="store_true",
        help="Write the real sample count in the WAV data chunk size instead of the legacy doubled value.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Settings file to read defaults from. Defaults to the per-user settings.ini.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging.",
    )
    return parser.parse_args(argv)


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s",
    )


def resolve_settings(args: argparse.Namespace) -> ExportSettings:
    settings = load_settings(args.config if args.config is not None else default_config_path())
    if args.output_dir is not None:
        settings.output_dir = args.output_dir
    if args.thumbnail_size is not None:
        settings.thumbnail_size = args.thumbnail_size
    if args.exact_wav_size:
        settings.exact_wav_size = True
    return settings


def sanitize_lump_name(name: str) -> str:
    if not name:
        return "unnamed"
    return re.sub(r"[^A-Za-z0-9_\-]", "_", name)


def list_lumps(container: IwadContainer) -> None:
    for lump in container:
        print(f"{lump.index:5d}  {lump.name:<8}  {lump.offset:10d}  {lump.length:8d}  {container.kind(lump.name)}")


def export_patches(container: IwadContainer, target_dir: Path, thumbnail_size: Optional[int]) -> Tuple[int, int]:
    written = 0
    failed = 0
    for name, result in container.decode_all_patches():
        if isinstance(result, FormatError):
            logging.error("Failed to decode patch %s: %s", name, result)
            failed += 1
            continue
        path = target_dir / f"{sanitize_lump_name(name)}.png"
        if thumbnail_size:
            path.parent.mkdir(parents=True, exist_ok=True)
            result.thumbnail(thumbnail_size).save(path)
        elif result.width == 0 or result.height == 0:
            logging.warning("Skipping empty patch %s (%dx%d)", name, result.width, result.height)
            continue
        else:
            write_png(path, result)
        logging.debug("Wrote %s", path)
        written += 1
    return written, failed


def export_sounds(container: IwadContainer, target_dir: Path, exact_wav_size: bool) -> Tuple[int, int]:
    written = 0
    failed = 0
    for name, result in container.decode_all_sounds():
        if isinstance(result, FormatError):
            logging.error("Failed to decode sound %s: %s", name, result)
            failed += 1
            continue
        path = target_dir / f"{sanitize_lump_name(name)}.wav"
        write_wav(path, result, exact_data_size=exact_wav_size)
        logging.debug("Wrote %s (%d Hz, %.2fs)", path, result.sample_rate, result.duration)
        written += 1
    return written, failed


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.verbose)

    input_path = args.input_path.resolve()
    if not input_path.is_file():
        logging.error("Source file does not exist: %s", input_path)
        return 1

    try:
        container = iwad.load(input_path)
    except FormatError as exc:
        logging.error("Unable to read %s: %s", input_path, exc)
        return 1

    logging.info(
        "Loaded %s: %d lumps, %d patches, %d sounds",
        input_path.name,
        len(container),
        len(container.patch_names()),
        len(container.sound_names()),
    )

    if args.list:
        list_lumps(container)
        return 0

    settings = resolve_settings(args)
    failures = 0
    if not args.skip_patches:
        written, failed = export_patches(container, settings.output_dir / "patches", settings.thumbnail_size)
        logging.info("Exported %d patch(es), %d failed", written, failed)
        failures += failed
    if not args.skip_sounds:
        written, failed = export_sounds(container, settings.output_dir / "sounds", settings.exact_wav_size)
        logging.info("Exported %d sound(s), %d failed", written, failed)
        failures += failed

    return 2 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
