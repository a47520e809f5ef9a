from __future__ import annotations

import logging
import sys
from pathlib import Path

import click

from .analysis import build_summary
from .completeness import evaluate
from .concentration import calculate_concentration, duration_minutes, report_concentration
from .io.config import ConfigError, Settings, load_config
from .io.export import save_summary
from .io.records import RecordError, load_batch, load_draft
from .models import WorkingSet
from .reconcile import reconcile
from .session import AnalysisSession, SessionError
from .stores import YamlBatchStore, YamlDraftStore


# ───────────────────────── click root ─────────────────────────
@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Log progress to stderr.")
def cli(verbose: bool) -> None:
    """Fibre-count command-line entry point."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s"
        )


# ───────────────────────── helpers ────────────────────────────
def _settings(config: Path | None) -> Settings:
    return load_config(config) if config else Settings()


def _working(batch_file: Path, draft_file: Path | None) -> WorkingSet:
    batch = load_batch(batch_file)
    draft = load_draft(draft_file) if draft_file else None
    return reconcile(batch, draft)


def _fail(message: str) -> None:
    click.echo(message, err=True)
    sys.exit(1)


_batch_option = click.option(
    "-i",
    "--input",
    "batch_file",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Batch record (YAML)",
)
_draft_option = click.option(
    "-d",
    "--draft",
    "draft_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="In-progress draft to reconcile before reporting",
)
_config_option = click.option(
    "-c",
    "--config",
    "config_file",
    type=click.Path(exists=True, path_type=Path),
    help="config.yml (graticule calibrations, default constant)",
)


# ─────────────────────────── summary ──────────────────────────
@cli.command(help="Print the per-sample summary of a batch.")
@_batch_option
@_draft_option
@_config_option
@click.option(
    "-o",
    "--out",
    "out_file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Also write the summary to this .xlsx file",
)
def summary(
    batch_file: Path,
    draft_file: Path | None,
    config_file: Path | None,
    out_file: Path | None,
) -> None:
    try:
        settings = _settings(config_file)
        working = _working(batch_file, draft_file)
    except (ConfigError, RecordError) as err:
        _fail(str(err))
        return

    df = build_summary(working, settings.constants())
    click.echo(df.to_string())

    if out_file:
        save_summary(df, out_file)
        click.echo(f"✓ Excel written → {out_file}")


# ──────────────────────────── check ───────────────────────────
@cli.command(help="Check whether a batch is ready to be finalised.")
@_batch_option
@_draft_option
def check(batch_file: Path, draft_file: Path | None) -> None:
    try:
        working = _working(batch_file, draft_file)
    except RecordError as err:
        _fail(str(err))
        return

    state = evaluate(working.calibration, working.samples, working.analyses)
    click.echo(state.state)
    for problem in state.problems:
        click.echo(f"  - {problem}")
    if not state.is_complete:
        sys.exit(1)


# ───────────────────────── concentration ──────────────────────
@cli.command(help="One-off airborne fibre concentration calculation.")
@click.option("--fibres", type=float, required=True, help="Fibres counted")
@click.option("--fields", type=int, required=True, help="Fields counted")
@click.option("--flow", type=float, required=True, help="Average flow rate (L/min)")
@click.option("--start", required=True, help="Start time HH:MM")
@click.option("--end", required=True, help="End time HH:MM")
@click.option("--constant", type=float, default=None, help="Microscope constant")
def concentration(
    fibres: float,
    fields: int,
    flow: float,
    start: str,
    end: str,
    constant: float | None,
) -> None:
    constant = Settings().default_constant if constant is None else constant
    minutes = duration_minutes(start, end)
    calculated = calculate_concentration(fibres, fields, flow, minutes, constant)

    click.echo(f"Minutes:    {minutes}")
    click.echo(f"Calculated: {'N/A' if calculated is None else calculated}")
    click.echo(f"Reported:   {report_concentration(calculated, fibres)}")


# ─────────────────────────── finalise ─────────────────────────
@cli.command(help="Finalise a batch kept in a folder of <batch id>.yml files.")
@click.argument("batch_id")
@click.option(
    "--dir",
    "batch_dir",
    required=True,
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Folder holding the batch records",
)
@click.option("--analyst", default=None, help="Analyst name (overrides the record)")
@_config_option
def finalise(
    batch_id: str,
    batch_dir: Path,
    analyst: str | None,
    config_file: Path | None,
) -> None:
    try:
        settings = _settings(config_file)
        session = AnalysisSession.load(
            batch_id,
            YamlBatchStore(batch_dir),
            YamlDraftStore(settings.draft_dir),
            settings.constants(),
            draft_key=settings.draft_key,
        )
        if analyst:
            session.set_analyst(analyst)
        session.finalise()
    except (ConfigError, SessionError) as err:
        _fail(str(err))
        return

    click.echo(f"✓ Batch {batch_id} finalised by {session.working.analyst}")


# -----------------------------------------------------------------
def _main() -> None:  # pragma: no cover
    """Entry-point for `python -m fibrecount`."""
    cli()


if __name__ == "__main__":  # pragma: no cover
    _main()
