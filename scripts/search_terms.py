"""
scripts/search_terms.py — Search the HPO reference data from the terminal.

Usage:  python -m scripts.search_terms 发热
        python -m scripts.search_terms --exact HP:0001945
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from core.config import HPO_DATA_SOURCE, SEARCH_LIMIT, SEARCH_THRESHOLD
from core.errors import SmartMatchError
from core.reference_index import ReferenceIndex
from tools.term_search import FuzzySearchIndex, search_terms


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Search HPO terms by id, name or definition")
    parser.add_argument("query", help="Search text")
    parser.add_argument("--exact", action="store_true", help="Exact id / name lookup")
    parser.add_argument(
        "--data",
        default=HPO_DATA_SOURCE,
        help=f"Path or URL of hpo_data.json (default: {HPO_DATA_SOURCE})",
    )
    parser.add_argument("--limit", type=int, default=SEARCH_LIMIT)
    parser.add_argument("--threshold", type=float, default=SEARCH_THRESHOLD)
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        index = asyncio.run(ReferenceIndex(args.data).load())
        fuzzy = None if args.exact else FuzzySearchIndex.from_index(index, threshold=args.threshold)
        response = search_terms(
            index,
            args.query,
            mode="exact" if args.exact else "fuzzy",
            limit=args.limit,
            fuzzy=fuzzy,
        )
    except SmartMatchError as exc:
        print(f"Error ({type(exc).__name__}): {exc}", file=sys.stderr)
        return 1

    if not response.results:
        print(f"No results for {args.query!r}")
        return 0

    for hit in response.results:
        print(f"{hit.score:5.2f}  {hit.label}")
    print(f"\n{response.total} result(s)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
