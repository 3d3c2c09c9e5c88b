"""
Maintenance task runner for city aggregates and metrics.

Usage:
  python scripts/maintenance.py stats --all
  python scripts/maintenance.py stats --city san-diego-ca --dry-run
  python scripts/maintenance.py livability --all
  python scripts/maintenance.py metrics --city san-diego-ca --owner safetySync \\
      --set safetyScore=6.8 --set crimeIndexPer100k=2387 --meta source=fbi-ucr

Tasks:
  stats       rebuild count/sums from reviews (reconciliation)
  livability  re-score from stored aggregates and current metrics
  metrics     owner-scoped metrics write, then re-score that city

stats and livability keep going after a per-city failure and exit non-zero
if any city failed.
"""

import argparse
import json
import logging
import sys
from typing import Any, Dict, List, Optional, Sequence

from app.config.collections import CITIES_COLLECTION
from app.config.firebase import get_db
from app.core.errors import CityNotFoundError, LivabilityError
from app.services.city_service import CityService, normalize_city_id
from app.services.city_stats_service import CityStatsService
from app.services.metrics_service import MetricsService, parse_owner

logger = logging.getLogger("maintenance")


def existing_city_id(db, slug: str) -> str:
    city_id = normalize_city_id(slug)
    if CityService(db=db).get_city(city_id) is None:
        raise CityNotFoundError(city_id)
    return city_id


def resolve_city_ids(db, all_cities: bool, city: Optional[str]) -> List[str]:
    if all_cities and city:
        raise ValueError("use either --all OR --city, not both")
    if not all_cities and not city:
        raise ValueError("requires --all or --city <slug>")
    if city:
        return [existing_city_id(db, city)]
    return [doc.id for doc in db.collection(CITIES_COLLECTION).stream()]


def parse_assignments(pairs: Optional[Sequence[str]]) -> Dict[str, Any]:
    """
    Parse ``key=value`` pairs. Values are read as JSON when possible
    (numbers, null, objects) and as plain strings otherwise.
    """
    out: Dict[str, Any] = {}
    for pair in pairs or []:
        key, sep, raw = pair.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"expected key=value, got {pair!r}")
        try:
            value = json.loads(raw)
        except ValueError:
            value = raw
        out[key.strip()] = value
    return out


def task_stats(db, city_ids: List[str], dry_run: bool = False) -> Dict[str, Any]:
    if dry_run:
        logger.info(f"[dry-run] would recompute stats for {len(city_ids)} cities")
        return {"cityIds": city_ids, "ok": 0, "fail": 0}

    service = CityStatsService(db=db)
    ok = fail = 0
    for city_id in city_ids:
        try:
            result = service.recompute_from_reviews(city_id)
            logger.info(f"{city_id}: count={result['count']} livability={result['livability']['score']}")
            ok += 1
        except Exception as e:
            logger.error(f"{city_id}: {e}")
            fail += 1
    return {"cityIds": city_ids, "ok": ok, "fail": fail}


def task_livability(db, city_ids: List[str], dry_run: bool = False) -> Dict[str, Any]:
    if dry_run:
        logger.info(f"[dry-run] would recompute livability for {len(city_ids)} cities")
        return {"cityIds": city_ids, "ok": 0, "fail": 0}

    service = CityStatsService(db=db)
    ok = fail = 0
    for city_id in city_ids:
        try:
            livability = service.recompute_livability(city_id)
            logger.info(f"{city_id}: livability={livability['score']}")
            ok += 1
        except Exception as e:
            logger.error(f"{city_id}: {e}")
            fail += 1
    return {"cityIds": city_ids, "ok": ok, "fail": fail}


def task_metrics(
    db,
    city_id: str,
    owner: str,
    fields: Dict[str, Any],
    meta: Optional[Dict[str, Any]] = None,
    dry_run: bool = False,
) -> Dict[str, Any]:
    owner_enum = parse_owner(owner)
    patch = dict(fields)
    if meta:
        patch["meta"] = meta

    if dry_run:
        logger.info(f"[dry-run] {owner_enum.value} -> {city_id}: {patch}")
        return {"cityId": city_id, "owner": owner_enum.value, "patch": patch}

    summary = MetricsService(db=db).upsert_metrics(city_id, patch, owner_enum)
    summary["livability"] = CityStatsService(db=db).recompute_livability(city_id)
    logger.info(f"{city_id}: wrote {summary['written']} dropped {summary['dropped']}")
    return summary


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="City aggregate and metrics maintenance")
    sub = parser.add_subparsers(dest="task", required=True)

    for name, help_text in (
        ("stats", "Rebuild count/sums from reviews"),
        ("livability", "Re-score livability from stored aggregates"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--all", action="store_true", dest="all_cities", help="Every city")
        p.add_argument("--city", help="City slug")
        p.add_argument("--dry-run", action="store_true")

    p = sub.add_parser("metrics", help="Owner-scoped metrics write")
    p.add_argument("--city", required=True, help="City slug")
    p.add_argument("--owner", required=True, help="metricsSync | safetySync")
    p.add_argument("--set", action="append", dest="fields", metavar="FIELD=VALUE", help="Field value (repeatable)")
    p.add_argument("--meta", action="append", metavar="KEY=VALUE", help="Provenance entry (repeatable)")
    p.add_argument("--dry-run", action="store_true")

    return parser


def main(argv=None, db=None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        db = db if db is not None else get_db()

        if args.task == "metrics":
            task_metrics(
                db,
                existing_city_id(db, args.city),
                args.owner,
                parse_assignments(args.fields),
                parse_assignments(args.meta) or None,
                dry_run=args.dry_run,
            )
            return 0

        city_ids = resolve_city_ids(db, args.all_cities, args.city)
        task = task_stats if args.task == "stats" else task_livability
        result = task(db, city_ids, dry_run=args.dry_run)
    except LivabilityError as e:
        logger.error(f"{e.code}: {e.message}")
        return 1
    except ValueError as e:
        parser.error(str(e))

    return 1 if result["fail"] else 0


if __name__ == "__main__":
    sys.exit(main())
