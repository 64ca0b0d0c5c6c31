"""
Retrain Models Job - Retrain pattern models and report their health.

Retrains every dataset (or a single one), then reconciles drift and
retirement for each dataset's latest model.

Usage:
    python3 backend/jobs/retrain_models.py
    python3 backend/jobs/retrain_models.py --dataset-id <id>
    python3 backend/jobs/retrain_models.py --dataset-type video_ads --health-only
"""

import argparse
import os
import sys
from typing import Dict, List

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from intelcore.core import IntelligenceCore, build_core
from intelcore.log_config import log_context, logger
from intelcore.utils.errors import IntelCoreError


def run_retraining(
    core: IntelligenceCore,
    dataset_ids: List[str],
    health_only: bool = False,
) -> Dict[str, int]:
    """
    Retrain and check each dataset.

    Returns:
        Counters: trained, insufficient_data, unhealthy, errors
    """
    stats = {"trained": 0, "insufficient_data": 0, "unhealthy": 0, "errors": 0}

    for dataset_id in dataset_ids:
        with log_context(dataset_id=dataset_id):
            try:
                if not health_only:
                    outcome = core.train(dataset_id)
                    stats[outcome.status] += 1
                    if outcome.status == "trained":
                        metrics = outcome.result.metrics
                        logger.info(
                            f"Model {outcome.model_id} "
                            f"R²={metrics.r_squared:.4f} tier_accuracy={metrics.tier_accuracy:.2f}"
                        )
                    else:
                        logger.info(outcome.message)

                health = core.assess_model_health(dataset_id, apply_retirement=True)
                if not health.healthy:
                    stats["unhealthy"] += 1
                    logger.warning(
                        f"recommendation={health.recommendation} "
                        f"drift={health.drift.drift_type} model_status={health.model_status}"
                    )
            except IntelCoreError as e:
                stats["errors"] += 1
                logger.error(e.message)

    return stats


def main():
    """Main entry point for CLI execution."""
    parser = argparse.ArgumentParser(description="Retrain pattern models and report model health")

    parser.add_argument(
        "--dataset-id",
        type=str,
        default=None,
        help="Only process this dataset (default: all datasets)"
    )

    parser.add_argument(
        "--dataset-type",
        type=str,
        default=None,
        help="Only process datasets of this type"
    )

    parser.add_argument(
        "--health-only",
        action="store_true",
        help="Skip retraining; only report drift and retirement"
    )

    args = parser.parse_args()

    core = build_core(with_signal_sources=False)

    if args.dataset_id:
        dataset_ids = [args.dataset_id]
    else:
        dataset_ids = [d.id for d in core.list_datasets(args.dataset_type)]

    logger.info(f"Starting model retraining for {len(dataset_ids)} datasets")
    stats = run_retraining(core, dataset_ids, health_only=args.health_only)
    logger.info(f"Model retraining complete: {stats}")

    sys.exit(1 if stats["errors"] else 0)


if __name__ == "__main__":
    main()
