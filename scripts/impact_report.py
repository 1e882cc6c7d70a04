"""Print assignment impact results for a test group (or one assignment) as JSON."""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Sequence

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from db import ImpactRepository
from engines.impact import ImpactEngine


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--db",
        type=str,
        default="data.db",
        help="Path to the SQLite database (default: data.db)",
    )
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--group", type=int, help="Rank every assignment in this test group")
    target.add_argument("--assignment", type=int, help="Report a single assignment")
    parser.add_argument(
        "--standards",
        action="store_true",
        help="Include the per-standard breakdown",
    )
    parser.add_argument(
        "--significant-only",
        action="store_true",
        help="With --group, keep only results with p < 0.05",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Optional path to write the JSON report",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not Path(args.db).exists():
        print(f"Database not found: {args.db}", file=sys.stderr)
        return 2

    repository = ImpactRepository.from_path(args.db, max_connections=1)
    engine = ImpactEngine(repository)
    try:
        if args.group is not None:
            impacts = engine.compute_portfolio_impacts(args.group, include_standard_breakdown=args.standards)
            if args.significant_only:
                impacts = [impact for impact in impacts if impact.is_significant]
            report = {
                "group_id": args.group,
                "count": len(impacts),
                "impacts": [impact.model_dump(mode="json") for impact in impacts],
            }
        else:
            result = (
                engine.compute_standard_level_impact(args.assignment)
                if args.standards
                else engine.compute_assignment_impact(args.assignment)
            )
            if result is None:
                print(
                    f"Assignment {args.assignment} not found or has no impacted test",
                    file=sys.stderr,
                )
                return 1
            report = result.model_dump(mode="json")
    finally:
        repository.pool.close_all()

    payload = json.dumps(report, indent=2, ensure_ascii=False)
    if args.output:
        Path(args.output).write_text(payload + "\n", encoding="utf-8")
    print(payload)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
