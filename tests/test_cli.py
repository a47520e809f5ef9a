import shutil
from pathlib import Path

import yaml
from click.testing import CliRunner

from fibrecount.cli import cli


def test_cli_summary_with_draft_and_excel(demo_dir: Path, tmp_path: Path):
    out = tmp_path / "summary.xlsx"
    result = CliRunner().invoke(
        cli,
        [
            "summary",
            "-i", str(demo_dir / "SHIFT-1.yml"),
            "-d", str(demo_dir / "draft.yml"),
            "-c", str(demo_dir / "config.yml"),
            "-o", str(out),
        ],
        catch_exceptions=False,
    )
    assert result.exit_code == 0, result.output
    assert "LD-1-AM1" in result.output
    assert "UDD" in result.output
    assert out.exists()


def test_cli_summary_bad_config(demo_dir: Path, tmp_path: Path):
    cfg = tmp_path / "config.yml"
    cfg.write_text("default_constant: lots\n")
    result = CliRunner().invoke(
        cli, ["summary", "-i", str(demo_dir / "SHIFT-1.yml"), "-c", str(cfg)]
    )
    assert result.exit_code == 1
    assert "default_constant" in result.output


def test_cli_check(demo_dir: Path):
    runner = CliRunner()
    batch = str(demo_dir / "SHIFT-1.yml")

    incomplete = runner.invoke(cli, ["check", "-i", batch])
    assert incomplete.exit_code == 1
    assert incomplete.output.startswith("incomplete")
    assert "LD-1-FB" in incomplete.output

    complete = runner.invoke(cli, ["check", "-i", batch, "-d", str(demo_dir / "draft.yml")])
    assert complete.exit_code == 0, complete.output
    assert complete.output.strip() == "complete"


def test_cli_concentration():
    result = CliRunner().invoke(
        cli,
        ["concentration", "--fibres", "8", "--fields", "50", "--flow", "2",
         "--start", "09:00", "--end", "09:30"],
    )
    assert result.exit_code == 0
    assert "Minutes:    30" in result.output
    assert "Calculated: 0.1667" in result.output
    assert "Reported:   0.167" in result.output


def test_cli_concentration_undefined():
    result = CliRunner().invoke(
        cli,
        ["concentration", "--fibres", "8", "--fields", "0", "--flow", "2",
         "--start", "09:00", "--end", "09:30"],
    )
    assert "Reported:   N/A" in result.output


def _finalise_setup(demo_dir: Path, tmp_path: Path, with_draft: bool) -> Path:
    batches = tmp_path / "batches"
    batches.mkdir()
    shutil.copy(demo_dir / "SHIFT-1.yml", batches)

    drafts = tmp_path / "drafts"
    drafts.mkdir()
    if with_draft:
        shutil.copy(demo_dir / "draft.yml", drafts / "analysis_progress.yml")

    cfg = tmp_path / "config.yml"
    cfg.write_text(yaml.safe_dump({"draft_dir": str(drafts)}))
    return cfg


def test_cli_finalise(demo_dir: Path, tmp_path: Path):
    cfg = _finalise_setup(demo_dir, tmp_path, with_draft=True)
    result = CliRunner().invoke(
        cli,
        ["finalise", "SHIFT-1", "--dir", str(tmp_path / "batches"), "-c", str(cfg)],
        catch_exceptions=False,
    )
    assert result.exit_code == 0, result.output
    assert "finalised by Jo Bloggs" in result.output

    stored = yaml.safe_load((tmp_path / "batches" / "SHIFT-1.yml").read_text())
    assert stored["status"] == "complete"
    assert stored["analyses"]["s2"]["reported_concentration"] == "UDD"
    assert not (tmp_path / "drafts" / "analysis_progress.yml").exists()


def test_cli_finalise_incomplete(demo_dir: Path, tmp_path: Path):
    cfg = _finalise_setup(demo_dir, tmp_path, with_draft=False)
    result = CliRunner().invoke(
        cli, ["finalise", "SHIFT-1", "--dir", str(tmp_path / "batches"), "-c", str(cfg)]
    )
    assert result.exit_code == 1
    assert "incomplete" in result.output
    stored = yaml.safe_load((tmp_path / "batches" / "SHIFT-1.yml").read_text())
    assert stored["status"] == "in_progress"
