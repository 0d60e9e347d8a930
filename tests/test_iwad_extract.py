import struct
from pathlib import Path

import pytest
from PIL import Image

import iwad_extract
from conftest import build_patch, build_wad, grab_offsets


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setattr(iwad_extract.sys, "platform", "linux")


@pytest.fixture
def wad_path(tmp_path, sample_wad) -> Path:
    path = tmp_path / "doom.wad"
    path.write_bytes(sample_wad)
    return path


def test_exports_patches_and_sounds(tmp_path, wad_path):
    out = tmp_path / "out"
    assert iwad_extract.main([str(wad_path), "--output-dir", str(out)]) == 0

    png = out / "patches" / "TROOA1.png"
    wav = out / "sounds" / "DSPISTOL.wav"
    assert grab_offsets(png.read_bytes()) == (1, 3)
    with Image.open(png) as image:
        assert image.size == (3, 4)
    data = wav.read_bytes()
    assert data[:4] == b"RIFF"
    assert struct.unpack_from("<I", data, 40)[0] == 8


def test_exact_wav_size_flag(tmp_path, wad_path):
    out = tmp_path / "out"
    iwad_extract.main([str(wad_path), "--output-dir", str(out), "--exact-wav-size", "--skip-patches"])
    data = (out / "sounds" / "DSPISTOL.wav").read_bytes()
    assert struct.unpack_from("<I", data, 40)[0] == 4
    assert not (out / "patches").exists()


def test_thumbnails(tmp_path, wad_path):
    out = tmp_path / "out"
    iwad_extract.main([str(wad_path), "--output-dir", str(out), "--thumbnail-size", "16", "--skip-sounds"])
    with Image.open(out / "patches" / "TROOA1.png") as image:
        assert image.size == (16, 16)
    assert not (out / "sounds").exists()


def test_list(wad_path, capsys):
    assert iwad_extract.main([str(wad_path), "--list"]) == 0
    lines = capsys.readouterr().out.splitlines()
    assert len(lines) == 5
    assert lines[0].split() == ["1", "PLAYPAL", "12", "768", "data"]
    assert lines[3].split()[1:2] == ["TROOA1"]
    assert lines[3].split()[-1] == "patch"


def test_missing_file(tmp_path):
    assert iwad_extract.main([str(tmp_path / "absent.wad")]) == 1


def test_unparseable_file(tmp_path):
    path = tmp_path / "bad.wad"
    path.write_bytes(b"PWAD" + bytes(20))
    assert iwad_extract.main([str(path)]) == 1


def test_bad_lump_gives_exit_code_two(tmp_path, palette_bytes):
    good = build_patch(1, 1, [[(0, [9])]])
    broken = build_patch(2, 2, [[], []], column_offsets=[16, 5000])
    path = tmp_path / "broken.wad"
    path.write_bytes(
        build_wad(
            [
                ("PLAYPAL", palette_bytes),
                ("S_START", b""),
                ("BROKEN", broken),
                ("GOOD", good),
                ("S_END", b""),
            ]
        )
    )
    out = tmp_path / "out"
    assert iwad_extract.main([str(path), "--output-dir", str(out)]) == 2
    assert (out / "patches" / "GOOD.png").is_file()
    assert not (out / "patches" / "BROKEN.png").exists()


def test_settings_file_supplies_defaults(tmp_path, wad_path):
    out = tmp_path / "from-config"
    config = tmp_path / "settings.ini"
    config.write_text(
        f"[export]\noutput_dir = {out}\nthumbnail_size = 8\nexact_wav_size = yes\n",
        encoding="utf-8",
    )
    assert iwad_extract.main([str(wad_path), "--config", str(config)]) == 0
    with Image.open(out / "patches" / "TROOA1.png") as image:
        assert image.size == (8, 8)
    data = (out / "sounds" / "DSPISTOL.wav").read_bytes()
    assert struct.unpack_from("<I", data, 40)[0] == 4


def test_default_settings_path_is_used(tmp_path, wad_path):
    config_dir = tmp_path / "config" / "iwad-extract"
    config_dir.mkdir(parents=True)
    out = tmp_path / "xdg-out"
    (config_dir / "settings.ini").write_text(f"[export]\noutput_dir = {out}\n", encoding="utf-8")
    assert iwad_extract.main([str(wad_path), "--skip-sounds"]) == 0
    assert (out / "patches" / "TROOA1.png").is_file()


def test_command_line_overrides_settings(tmp_path):
    config = tmp_path / "settings.ini"
    config.write_text("[export]\noutput_dir = elsewhere\nthumbnail_size = 8\n", encoding="utf-8")
    args = iwad_extract.parse_args(
        ["doom.wad", "--config", str(config), "--output-dir", str(tmp_path), "--thumbnail-size", "32"]
    )
    settings = iwad_extract.resolve_settings(args)
    assert settings.output_dir == tmp_path
    assert settings.thumbnail_size == 32
    assert settings.exact_wav_size is False


def test_invalid_settings_fall_back(tmp_path, caplog):
    config = tmp_path / "settings.ini"
    config.write_text("[export]\nthumbnail_size = big\nexact_wav_size = maybe\n", encoding="utf-8")
    settings = iwad_extract.load_settings(config)
    assert settings == iwad_extract.ExportSettings()
    assert "thumbnail_size" in caplog.text


def test_unreadable_settings_fall_back(tmp_path):
    config = tmp_path / "settings.ini"
    config.write_text("not an ini file\n", encoding="utf-8")
    assert iwad_extract.load_settings(config) == iwad_extract.ExportSettings()


def test_missing_settings_file(tmp_path):
    assert iwad_extract.load_settings(tmp_path / "nope.ini") == iwad_extract.ExportSettings()


def test_rejects_non_positive_thumbnail_size():
    with pytest.raises(SystemExit):
        iwad_extract.parse_args(["doom.wad", "--thumbnail-size", "0"])


def test_sanitize_lump_name():
    assert iwad_extract.sanitize_lump_name("VILE\\1") == "VILE_1"
    assert iwad_extract.sanitize_lump_name("") == "unnamed"
