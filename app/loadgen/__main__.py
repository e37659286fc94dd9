from __future__ import annotations

import argparse
import asyncio

from app.loadgen.runner import run_load
from app.observability.logging import configure_logging


def main() -> None:
    parser = argparse.ArgumentParser(description="Synthetic traffic generator for the demo service")
    parser.add_argument("--base-url", default="http://localhost:5060", help="Service base URL")
    parser.add_argument("--vus", type=int, default=20, help="Concurrent virtual users")
    parser.add_argument("--iterations", type=int, default=10, help="Iterations per virtual user")
    parser.add_argument("--min-pause", type=float, default=1.0, help="Minimum pause between iterations (seconds)")
    parser.add_argument("--max-pause", type=float, default=3.0, help="Maximum pause between iterations (seconds)")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for reproducible runs")
    parser.add_argument("--out", default=None, help="Optional path to write the JSON report")
    args = parser.parse_args()

    configure_logging()
    report = asyncio.run(
        run_load(
            args.base_url,
            virtual_users=args.vus,
            iterations=args.iterations,
            pause_s=(args.min_pause, args.max_pause),
            seed=args.seed,
            out_path=args.out,
        )
    )
    print(report.model_dump_json(indent=2))


if __name__ == "__main__":
    main()
