import logging
from pathlib import Path
from typing import Optional

import typer

from .config import MatchConfig
from .gl import GlServiceError
from .match_service import MatchService
from .models import DetailRace, MatchResult
from .trace import TraceRecorder


def main(
    recipient_gl: str = typer.Argument(
        ...,
        help="Recipient HLA-DPB1 typing as a GL string or GL service URI.",
    ),
    donor_gl: str = typer.Argument(
        ...,
        help="Donor HLA-DPB1 typing as a GL string or GL service URI.",
    ),
    recipient_race: DetailRace = typer.Option(
        DetailRace.UNK.value,
        "--recipient-race",
        "-r",
        help="Recipient's detailed race code.",
        case_sensitive=False,
    ),
    donor_race: DetailRace = typer.Option(
        DetailRace.UNK.value,
        "--donor-race",
        "-d",
        help="Donor's detailed race code.",
        case_sensitive=False,
    ),
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="YAML configuration file (defaults to $DPB1_EPITOPE_CONFIG, if set).",
        dir_okay=False,
        file_okay=True,
        exists=True,
        readable=True,
    ),
    trace: bool = typer.Option(
        False,
        "--trace",
        "-t",
        help="Print an explanation of each step of the match to stderr.",
    ),
    log_level: int = typer.Option(
        0,
        "-v",
        count=True,
        help="Logging level from [Warn, Info, Debug], default Warn. Repeat -v's to receive more verbose output",
    ),
) -> None:
    logging.basicConfig(level=max(logging.WARNING - 10 * log_level, logging.DEBUG))

    service: MatchService = MatchService.use_config(
        MatchConfig.load(config_path.as_posix() if config_path is not None else None)
    )
    recorder: Optional[TraceRecorder] = TraceRecorder() if trace else None
    try:
        result: MatchResult = service.get_match(
            recipient_gl,
            recipient_race,
            donor_gl,
            donor_race,
            recorder,
        )
    except (ValueError, GlServiceError) as e:
        typer.echo(f"Unable to compute match: {e}", err=True)
        raise typer.Exit(code=1)

    if recorder is not None:
        for line in recorder.lines:
            typer.echo(line, err=True)
    typer.echo(result.model_dump_json())


def run():
    typer.run(main)
