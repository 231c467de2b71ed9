#! /usr/bin/env python

import argparse
import json
import logging
from typing import Optional

from .config import MatchConfig
from .gl import GlServiceError
from .match_from_json_lib import MatchInput, MatchOutput
from .match_service import MatchService
from .models import MatchResult
from .trace import TraceRecorder

logging.basicConfig()
logger: logging.Logger = logging.getLogger(__name__)


def compute_match(match_input: MatchInput) -> MatchOutput:
    errors: list[str] = match_input.check_input()
    if len(errors) > 0:
        return MatchOutput(errors=errors)

    service: MatchService = MatchService.use_config(
        MatchConfig.load(match_input.config_path)
    )
    recorder: Optional[TraceRecorder] = (
        TraceRecorder() if match_input.trace else None
    )
    try:
        result: MatchResult = service.get_match(
            match_input.recipient_gl,
            match_input.recipient_detail_race(),
            match_input.donor_gl,
            match_input.donor_detail_race(),
            recorder,
        )
    except (ValueError, GlServiceError) as e:
        # Bad typings are reported to the caller; anything else is a bug.
        logger.info(f"Unable to compute match: {e}")
        return MatchOutput(errors=[str(e)])

    return MatchOutput.build_from_result(
        result, recorder.lines if recorder is not None else None
    )


def main():
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        "Compute an HLA-DPB1 T-cell epitope match from a JSON input"
    )
    parser.add_argument(
        "infile",
        type=argparse.FileType("r"),
        help='Input file containing the JSON input (use "-" to read from stdin)',
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="count",
        default=0,
        help="Output status messages (and debug messages if -vv is used)",
    )
    args: argparse.Namespace = parser.parse_args()

    if args.verbose == 1:
        logging.getLogger("dpb1_epitope").setLevel(logging.INFO)
    elif args.verbose > 1:
        logging.getLogger("dpb1_epitope").setLevel(logging.DEBUG)

    with args.infile:
        match_input: MatchInput = MatchInput(**json.load(args.infile))

    print(compute_match(match_input).model_dump_json())


if __name__ == "__main__":
    main()
