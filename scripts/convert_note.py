"""
scripts/convert_note.py — Convert one clinical note into verified HPO terms.

Usage:  python -m scripts.convert_note --text "患者发热三天，伴咳嗽"
        python -m scripts.convert_note --file note.txt --data data/hpo_data.json

Prints the ConversionResult as JSON (wire field names).
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from core.config import CALIBRATION_THRESHOLD, HPO_DATA_SOURCE, REDIS_URL, load_llm_config
from core.errors import SmartMatchError
from core.models import ConversionResult
from core.reference_index import ReferenceIndex
from core.session_manager import SessionManager
from smartmatch.pipeline import run_conversion


async def convert(text: str, data_source: str, threshold: float, audit: bool) -> ConversionResult:
    index = await ReferenceIndex(data_source).load()
    session_mgr = SessionManager(REDIS_URL) if audit and REDIS_URL else None
    return await run_conversion(
        text,
        index,
        config=load_llm_config(),
        session_mgr=session_mgr,
        threshold=threshold,
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Convert a clinical note into HPO terms")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--text", help="Note text")
    source.add_argument("--file", type=Path, help="UTF-8 file containing the note")
    parser.add_argument(
        "--data",
        default=HPO_DATA_SOURCE,
        help=f"Path or URL of hpo_data.json (default: {HPO_DATA_SOURCE})",
    )
    parser.add_argument(
        "--threshold",
        type=float,
        default=CALIBRATION_THRESHOLD,
        help=f"Calibration similarity floor (default: {CALIBRATION_THRESHOLD})",
    )
    parser.add_argument("--audit", action="store_true", help="Write an audit trail to REDIS_URL")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (default: WARNING)")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    text = args.text if args.text is not None else args.file.read_text(encoding="utf-8")

    try:
        result = asyncio.run(convert(text, args.data, args.threshold, args.audit))
    except SmartMatchError as exc:
        print(f"Error ({type(exc).__name__}): {exc}", file=sys.stderr)
        return 1

    print(json.dumps(result.model_dump(by_alias=True), ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
