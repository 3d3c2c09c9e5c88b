import json

import pytest

from app.config.collections import METRICS_COLLECTION, STATS_COLLECTION
from scripts import maintenance, seed_db
from tests.conftest import SACRAMENTO, SAN_DIEGO, make_ratings


def test_parse_assignments():
    assert maintenance.parse_assignments(["population=100", "source=acs5", "safetyScore=null"]) == {
        "population": 100,
        "source": "acs5",
        "safetyScore": None,
    }
    with pytest.raises(ValueError):
        maintenance.parse_assignments(["population"])


def test_stats_all_repairs_every_city(db, reviews):
    reviews.upsert_review(SAN_DIEGO, "u1", {"ratings": make_ratings(6)})
    db.collection(STATS_COLLECTION).document(SAN_DIEGO).set({"count": 9}, merge=True)

    assert maintenance.main(["stats", "--all"], db=db) == 0

    assert db.raw(STATS_COLLECTION, SAN_DIEGO)["count"] == 1
    assert db.raw(STATS_COLLECTION, SACRAMENTO)["count"] == 0


def test_stats_reports_failed_city(db):
    db.seed("reviews", "bad", {"cityId": SAN_DIEGO, "ratings": make_ratings(5, overall=-20)})
    assert maintenance.main(["stats", "--all"], db=db) == 1
    # the healthy city is still processed
    assert db.raw(STATS_COLLECTION, SACRAMENTO)["count"] == 0


def test_dry_run_writes_nothing(db):
    assert maintenance.main(["livability", "--city", SAN_DIEGO, "--dry-run"], db=db) == 0
    assert db.raw(STATS_COLLECTION, SAN_DIEGO) is None


def test_all_and_city_are_exclusive(db):
    with pytest.raises(SystemExit):
        maintenance.main(["stats", "--all", "--city", SAN_DIEGO], db=db)


def test_metrics_task(db, reviews):
    reviews.upsert_review(SAN_DIEGO, "u1", {"ratings": make_ratings(8)})
    code = maintenance.main(
        ["metrics", "--city", SAN_DIEGO, "--owner", "safetySync", "--set", "safetyScore=6", "--meta", "source=ucr"],
        db=db,
    )
    assert code == 0
    raw = db.raw(METRICS_COLLECTION, SAN_DIEGO)
    assert raw["safetyScore"] == 6.0
    assert raw["meta"] == {"safetySync": {"source": "ucr"}}
    assert db.raw(STATS_COLLECTION, SAN_DIEGO)["livability"]["score"] == 71


def test_metrics_task_rejects_unknown_owner(db):
    assert maintenance.main(["metrics", "--city", SAN_DIEGO, "--owner", "nobody", "--set", "population=1"], db=db) == 1


def test_seed_applies_cities_and_metrics(db, tmp_path):
    seed = {
        "cities": {"Fresno-CA": {"name": "Fresno", "state": "CA"}},
        "metrics": {"safetySync": {"fresno-ca": {"safetyScore": {"scale": "0-100", "value": 42}}}},
    }
    path = tmp_path / "seed.json"
    path.write_text(json.dumps(seed))

    assert seed_db.write_to_db(db, seed_db.load_seed(str(path)), apply=False) == 0
    assert db.raw("cities", "fresno-ca") is None

    assert seed_db.write_to_db(db, seed, apply=True) == 0
    assert db.raw("cities", "fresno-ca")["name"] == "Fresno"
    assert db.raw(METRICS_COLLECTION, "fresno-ca")["safetyScore"] == 4.2
    assert db.raw(STATS_COLLECTION, "fresno-ca")["livability"]["score"] == 42


@pytest.mark.parametrize("task", ["stats", "livability"])
def test_unknown_city_is_refused(db, task):
    assert maintenance.main([task, "--city", "atlantis-ca"], db=db) == 1
    assert db.raw(STATS_COLLECTION, "atlantis-ca") is None


def test_metrics_for_unknown_city_is_refused(db):
    code = maintenance.main(["metrics", "--city", "atlantis-ca", "--owner", "metricsSync", "--set", "population=1"], db=db)
    assert code == 1
    assert db.raw(METRICS_COLLECTION, "atlantis-ca") is None
    assert db.raw(STATS_COLLECTION, "atlantis-ca") is None


def test_reseed_keeps_city_created_at(db):
    seed = {"cities": {"fresno-ca": {"name": "Fresno", "state": "CA"}}}
    assert seed_db.write_to_db(db, seed, apply=True) == 0
    first = db.raw("cities", "fresno-ca")

    seed["cities"]["fresno-ca"]["name"] = "Fresno City"
    assert seed_db.write_to_db(db, seed, apply=True) == 0
    second = db.raw("cities", "fresno-ca")

    assert second["name"] == "Fresno City"
    assert second["createdAt"] == first["createdAt"]
    assert second["updatedAt"] > first["updatedAt"]
