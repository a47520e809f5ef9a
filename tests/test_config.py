"""
Unit tests for the YAML loader in fibrecount.io.config
"""
from pathlib import Path

import pytest

from fibrecount.io.config import ConfigError, Settings, dump_config, load_config


def test_load_config(demo_dir: Path):
    settings = load_config(demo_dir)          # folder → folder/config.yml

    assert settings.default_constant == 50000
    assert settings.draft_key == "analysis_progress"
    assert settings.draft_dir == Path("drafts")
    assert len(settings.graticule_calibrations) == 3
    assert settings.constants().get_microscope_constant("PCM-1", "25mm") == 50000


def test_dump_then_load(demo_dir: Path, tmp_path: Path):
    settings = load_config(demo_dir / "config.yml")
    out = tmp_path / "config.yml"
    dump_config(settings, out)
    assert load_config(out) == settings


def test_empty_config_uses_defaults(tmp_path: Path):
    cfg = tmp_path / "config.yml"
    cfg.write_text("")
    assert load_config(cfg) == Settings()


def test_missing_config(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path)


@pytest.mark.parametrize(
    "text",
    [
        "colour: red\n",
        "default_constant: lots\n",
        "default_constant: -1\n",
        "graticule_calibrations: {a: 1}\n",
        "graticule_calibrations:\n  - microscope: PCM-1\n    date: 2026-01-01\n",
        "graticule_calibrations:\n  - graticule_id: G\n    microscope: P\n    date: soon\n",
        "- just\n- a list\n",
    ],
)
def test_bad_config(tmp_path: Path, text: str):
    cfg = tmp_path / "config.yml"
    cfg.write_text(text)
    with pytest.raises(ConfigError):
        load_config(cfg)
