from __future__ import annotations

import argparse
import asyncio
import json
import os
from pathlib import Path

from merchsim.api.report import build_simulation_report
from merchsim.core.engine import Simulator
from merchsim.core.thresholds import parse_threshold
from merchsim.core.timeparse import parse_stage
from merchsim.exceptions import FATAL_ERRORS
from merchsim.logger import configure_logging, session_logger as logger
from merchsim.scenarios.merch import DEFAULT_BASE_URL, DEFAULT_STAGES, DEFAULT_THRESHOLDS, build_merch_config

EXIT_PASS = 0
EXIT_THRESHOLDS_FAILED = 1
EXIT_FATAL = 2

_RECOVERY = {
    "MISSING_PATH": "Set APPTEST_USER_FILE and APPTEST_AUTH_TOKEN_FILE (or --users-file / --auth-token-file)",
    "RELATIVE_PATH": "Pass absolute paths for the users and auth token files",
    "DATASET_LENGTH_MISMATCH": "Regenerate the users and auth token files together so they stay index-aligned",
    "DATASET_TOO_SMALL": "Provide at least two users so transfers have a counterparty",
    "INVALID_URL": "Pass an absolute base URL such as http://127.0.0.1:8080 (env APPTEST_URL)",
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="merch service load-generation harness")
    parser.add_argument(
        "--url",
        type=str,
        default=os.environ.get("APPTEST_URL", DEFAULT_BASE_URL),
        help="Base URL of the service under test (env APPTEST_URL)",
    )
    parser.add_argument(
        "--users-file",
        type=str,
        default=os.environ.get("APPTEST_USER_FILE", ""),
        help="Absolute path to the users JSON file (env APPTEST_USER_FILE)",
    )
    parser.add_argument(
        "--auth-token-file",
        type=str,
        default=os.environ.get("APPTEST_AUTH_TOKEN_FILE", ""),
        help="Absolute path to the auth tokens JSON file (env APPTEST_AUTH_TOKEN_FILE)",
    )
    parser.add_argument(
        "--stage",
        dest="stages",
        action="append",
        default=None,
        help="Ramp stage as DURATION:TARGET (e.g. 2m:15). Repeat for each stage. Default: 2m:15 1m:30 1m:0 1m:20",
    )
    parser.add_argument(
        "--threshold",
        dest="thresholds",
        action="append",
        default=None,
        help="Threshold as METRIC=PREDICATE (e.g. 'http_req_duration=p(90)<50'). Repeatable.",
    )
    parser.add_argument(
        "--think-time",
        type=float,
        default=0.01,
        help="Pause between iterations of one virtual user, in seconds",
    )
    parser.add_argument(
        "--tick",
        type=float,
        default=0.1,
        help="Ramp scheduler tick, in seconds",
    )
    parser.add_argument(
        "--timeout-seconds",
        type=float,
        default=60.0,
        help="HTTP timeout per request",
    )
    parser.add_argument(
        "--eval-interval",
        type=float,
        default=None,
        help="Also evaluate thresholds every N seconds during the run and log the interim verdict",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Seed for reproducible action selection",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Write summary report JSON to this path",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Log level (env MERCHSIM_LOG_LEVEL, default INFO)",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        configure_logging(args.log_level)
    except ValueError as exc:
        parser.error(str(exc))

    try:
        stages = tuple(parse_stage(s) for s in args.stages) if args.stages else DEFAULT_STAGES
        thresholds = tuple(parse_threshold(t) for t in args.thresholds) if args.thresholds else DEFAULT_THRESHOLDS
        config = build_merch_config(
            base_url=args.url,
            users_file=args.users_file,
            auth_tokens_file=args.auth_token_file,
            stages=stages,
            thresholds=thresholds,
            think_time_seconds=args.think_time,
            tick_seconds=args.tick,
            timeout_seconds=args.timeout_seconds,
            evaluation_interval_seconds=args.eval_interval,
            seed=args.seed,
        )

        result = asyncio.run(Simulator(config, logger=logger).run())
    except FATAL_ERRORS as exc:
        logger.error(
            "sim.fatal",
            error_type=type(exc).__name__,
            code=exc.code,
            error=exc.message,
            details=exc.details,
            recovery=_RECOVERY.get(exc.code),
        )
        return EXIT_FATAL

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        payload = build_simulation_report(config, result)
        output_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")

        logger.info("sim.report_written", path=str(output_path))

    return EXIT_PASS if result.verdict.passed else EXIT_THRESHOLDS_FAILED


if __name__ == "__main__":
    raise SystemExit(main())
