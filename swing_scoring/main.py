"""
Command line entry point: score a joint-data JSON file.

    swing-score frames.json --video-id abc --bats L --persist
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import structlog
from pydantic import TypeAdapter, ValidationError

from swing_scoring.config import settings
from swing_scoring.errors import ScoringError
from swing_scoring.schemas.analysis import AnalysisCompleted, ScoringOutcome
from swing_scoring.schemas.joints import ScoringInputs
from swing_scoring.services.scoring_engine import ScoringEngine

logger = structlog.get_logger()

OUTCOME_ADAPTER = TypeAdapter(ScoringOutcome)


def configure_logging(level: Optional[str] = None) -> None:
    # Logs go to stderr so stdout stays pure JSON
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=(level or settings.log_level).upper())
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="swing-score", description="Score a swing from joint data")
    parser.add_argument("frames", type=Path, help="JSON file: a list of frames, or an object with 'frames'")
    parser.add_argument("--video-id", help="Video / session id stored with the result")
    parser.add_argument("--bats", choices=["R", "L", "S"], help="Batting side")
    parser.add_argument("--name", help="Athlete name")
    parser.add_argument("--level", choices=["MLB", "College", "HS", "Youth"], help="Playing level")
    parser.add_argument("--persist", action="store_true", help="Store the outcome in the database")
    return parser


def load_inputs(args: argparse.Namespace) -> ScoringInputs:
    data = json.loads(args.frames.read_text())
    if isinstance(data, list):
        data = {"frames": data}

    athlete = dict(data.get("athlete") or {})
    for field, value in (("bats", args.bats), ("name", args.name), ("level", args.level)):
        if value is not None:
            athlete[field] = value
    data["athlete"] = athlete
    if args.video_id is not None:
        data["video_id"] = args.video_id

    return ScoringInputs.model_validate(data)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()

    try:
        inputs = load_inputs(args)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        logger.error("Could not read joint data", path=str(args.frames), error=str(e))
        return 2

    try:
        outcome = ScoringEngine().score(inputs)
    except ScoringError as e:
        logger.error("Scoring aborted", error_kind=e.kind, error=e.message, context=e.context)
        return 2

    if args.persist:
        from swing_scoring.database import Base, SessionLocal, engine
        from swing_scoring.services.analysis_store import save_outcome

        Base.metadata.create_all(bind=engine)
        db = SessionLocal()
        try:
            save_outcome(db, outcome)
        finally:
            db.close()

    print(OUTCOME_ADAPTER.dump_json(outcome, by_alias=True, indent=2).decode())
    return 0 if isinstance(outcome, AnalysisCompleted) else 1


if __name__ == "__main__":
    sys.exit(main())
