"""
Fetch Signals Job - Pull external attention signals for keywords.

For each keyword this job:
1. Fetches every registered signal source (rate limits apply per source)
2. Detects lagged correlations between consecutive attention layers
3. Prints the keyword's Attention Migration Index

Usage:
    python3 backend/jobs/fetch_signals.py --keywords "air fryer,standing desk"
    python3 backend/jobs/fetch_signals.py --keywords "air fryer" --skip-correlations
"""

import argparse
import asyncio
import os
import sys
from typing import Dict, List

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from intelcore.core import IntelligenceCore, build_core
from intelcore.log_config import log_context, logger


async def fetch_keyword(core: IntelligenceCore, keyword: str, detect: bool = True) -> Dict[str, int]:
    """Fetch all sources for one keyword and optionally refresh its correlations."""
    with log_context(keyword=keyword):
        outcomes = await core.fetch_all_signals(keyword)

        stats = {"fetched": 0, "rate_limited": 0, "unavailable": 0, "patterns": 0}
        for outcome in outcomes:
            stats[outcome.status] += 1
            if outcome.status == "unavailable":
                logger.warning(f"{outcome.source_name} unavailable: {outcome.error}")

        if detect:
            stats["patterns"] = len(core.detect_correlations(keyword))

    return stats


async def run(core: IntelligenceCore, keywords: List[str], detect: bool = True) -> Dict[str, Dict[str, int]]:
    results = {}
    for keyword in keywords:
        results[keyword] = await fetch_keyword(core, keyword, detect)
    return results


def main():
    """Main entry point for CLI execution."""
    parser = argparse.ArgumentParser(
        description="Fetch external attention signals and compute AMI per keyword",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python3 backend/jobs/fetch_signals.py --keywords "air fryer"
  python3 backend/jobs/fetch_signals.py --keywords "air fryer,standing desk" --skip-correlations
        """
    )

    parser.add_argument(
        "--keywords",
        type=str,
        required=True,
        help="Comma-separated list of keywords to fetch"
    )

    parser.add_argument(
        "--skip-correlations",
        action="store_true",
        help="Fetch only; do not run cross-layer correlation detection"
    )

    args = parser.parse_args()

    keywords = [k.strip() for k in args.keywords.split(",") if k.strip()]
    if not keywords:
        parser.error("At least one keyword is required")

    logger.info(f"Starting signal fetch for {len(keywords)} keywords")
    core = build_core()
    results = asyncio.run(run(core, keywords, detect=not args.skip_correlations))

    print("\n" + "=" * 60)
    print("SIGNAL FETCH SUMMARY")
    print("=" * 60)
    for keyword, stats in results.items():
        ami = core.get_ami(keyword)
        print(
            f"{keyword}: fetched={stats['fetched']} rate_limited={stats['rate_limited']} "
            f"unavailable={stats['unavailable']} patterns={stats['patterns']}"
        )
        print(f"  AMI={ami.ami:.3f} stage={ami.stage} confidence={ami.confidence:.2f}")
    print("=" * 60)


if __name__ == "__main__":
    main()
