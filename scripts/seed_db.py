"""
Seed script for the City Livability Firestore database.

Usage:
  - Dry run (default): python scripts/seed_db.py
  - Apply to configured DB: python scripts/seed_db.py --apply
  - Other seed file: python scripts/seed_db.py --file path/to/seed.json --apply

Seed format:
  {
    "cities": {"<slug>": {"name": ..., "state": ..., ...}},
    "metrics": {"<owner>": {"<slug>": {"<field>": value, "meta": {...}}}}
  }

Behavior:
  - Cities are merge-written with createdAt/updatedAt server timestamps.
  - Metrics go through MetricsService, so owner field isolation applies,
    then each touched city is re-scored.

NOTE: Ensure FIREBASE_CREDENTIALS_PATH (or Application Default Credentials)
points at the intended project before running with --apply.
"""

import argparse
import json
import logging
import os
import sys
from typing import Any, Dict

from firebase_admin import firestore

from app.config.collections import CITIES_COLLECTION
from app.config.firebase import get_db
from app.services.city_service import normalize_city_id
from app.services.city_stats_service import CityStatsService
from app.services.metrics_service import MetricsService

logger = logging.getLogger("seed_db")


def load_seed(path: str = "./db_seed.json") -> dict:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def write_to_db(db: Any, seed: Dict[str, Any], apply: bool = False) -> int:
    """Write seed cities and metrics. Returns the number of failed writes."""
    failures = 0
    touched = set()

    for slug, data in (seed.get("cities") or {}).items():
        city_id = normalize_city_id(slug)
        logger.info(f"Preparing: {CITIES_COLLECTION}/{city_id}")
        if not apply:
            continue
        try:
            ref = db.collection(CITIES_COLLECTION).document(city_id)
            doc = {"slug": city_id, **data, "updatedAt": firestore.SERVER_TIMESTAMP}
            if not ref.get().exists:
                doc["createdAt"] = firestore.SERVER_TIMESTAMP
            ref.set(doc, merge=True)
            logger.info(f"Wrote: {CITIES_COLLECTION}/{city_id}")
        except Exception as e:
            failures += 1
            logger.error(f"Failed to write {CITIES_COLLECTION}/{city_id}: {e}")

    metrics = MetricsService(db=db)
    for owner, by_city in (seed.get("metrics") or {}).items():
        for slug, patch in by_city.items():
            city_id = normalize_city_id(slug)
            logger.info(f"Preparing: metrics {owner} -> {city_id}")
            if not apply:
                continue
            try:
                metrics.upsert_metrics(city_id, patch, owner)
                touched.add(city_id)
            except Exception as e:
                failures += 1
                logger.error(f"Failed to write metrics {owner} -> {city_id}: {e}")

    stats = CityStatsService(db=db)
    for city_id in sorted(touched):
        try:
            stats.recompute_livability(city_id)
        except Exception as e:
            failures += 1
            logger.error(f"Failed to re-score {city_id}: {e}")

    return failures


def main(argv=None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")

    parser = argparse.ArgumentParser(description="Seed cities and metrics into Firestore")
    parser.add_argument("--apply", action="store_true", help="Write seed to the DB instead of dry-run")
    parser.add_argument("--file", default=os.path.join(os.getcwd(), "db_seed.json"), help="Seed JSON path")
    args = parser.parse_args(argv)

    if not os.path.exists(args.file):
        logger.error(f"Seed file not found: {args.file}")
        return 1

    seed = load_seed(args.file)
    failures = write_to_db(get_db(), seed, apply=args.apply)

    if args.apply:
        logger.info(f"Seeding completed with {failures} failure(s).")
    else:
        logger.info("Dry run complete. Re-run with --apply to write to DB.")
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
