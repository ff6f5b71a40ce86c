"""Command-line entry point: analyse one SQL statement and print the result as JSON.

Usage:
    python -m sqlinsight "SELECT * FROM orders" --variant postgresql --skip security

The model endpoint and tuning come from ``SQLINSIGHT_*`` settings (see
``sqlinsight.core.config``).
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from sqlinsight.core.config import settings
from sqlinsight.core.logging import setup_logging
from sqlinsight.gateway.client import ChatCompletionsClient
from sqlinsight.orchestrator.orchestrator import build_default_orchestrator
from sqlinsight.orchestrator.types import AnalysisContext, OrchestratorState
from sqlinsight.tools.dimensions import DIMENSION_CONFIGS

logger = logging.getLogger("sqlinsight")


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="sqlinsight", description="Analyse a SQL statement with a language model")
    parser.add_argument("sql", help="SQL text, or '-' to read it from stdin")
    parser.add_argument("--variant", default="generic", help="database dialect, e.g. postgresql or mysql")
    parser.add_argument(
        "--skip",
        action="append",
        default=[],
        choices=sorted(DIMENSION_CONFIGS),
        help="dimension to leave out (repeatable)",
    )
    parser.add_argument("--log-level", default=None, help="overrides SQLINSIGHT_LOG_LEVEL")
    return parser.parse_args(argv)


async def _analyse(sql: str, variant: str, skipped: list[str]) -> dict:
    orchestrator = build_default_orchestrator(ChatCompletionsClient.from_settings(settings), settings)
    context = AnalysisContext(
        subject=sql,
        variant=variant,
        dimensions={name: name not in skipped for name in orchestrator.tools},
    )
    result = await orchestrator.run(context)
    if result.state == OrchestratorState.ERROR_TERMINAL:
        logger.error("Nothing to analyse: %s", result.error)
    return result.to_dict()


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    # stdout carries the JSON result
    setup_logging(level=args.log_level, stream=sys.stderr)

    sql = sys.stdin.read() if args.sql == "-" else args.sql
    payload = asyncio.run(_analyse(sql, args.variant, args.skip))
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))
    return 0 if payload["state"] == OrchestratorState.DONE.value else 1


if __name__ == "__main__":
    sys.exit(main())
