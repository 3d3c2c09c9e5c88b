"""
Shared fixtures: an in-memory Firestore, a controllable server clock,
deterministic settings, services bound to the fake, and an HTTP client.
"""

import pytest
from fastapi.testclient import TestClient

import app.config.firebase as firebase_config
from app.config.collections import CITIES_COLLECTION, METRICS_COLLECTION
from app.core.settings import settings
from app.services import city_service, city_stats_service, metrics_service, review_service
from app.services.city_stats_service import CityStatsService
from app.services.metrics_service import MetricsService
from app.services.review_service import ReviewService
from tests.fakes import FakeClock, FakeFirestore

TEST_SALT = "test-salt"

SAN_DIEGO = "san-diego-ca"
SACRAMENTO = "sacramento-ca"


def make_ratings(value: int = 8, **overrides) -> dict:
    ratings = {k: value for k in ("safety", "cost", "traffic", "cleanliness", "overall")}
    ratings.update(overrides)
    return ratings


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    monkeypatch.setattr(settings, "REVIEW_ID_SALT", TEST_SALT)
    monkeypatch.setattr(settings, "TRANSACTION_MAX_ATTEMPTS", 5)
    monkeypatch.setattr(settings, "TRANSACTION_RETRY_BACKOFF_SECONDS", 0.0)
    monkeypatch.setattr(settings, "REVIEWS_DEFAULT_PAGE_SIZE", 10)
    monkeypatch.setattr(settings, "REVIEWS_MAX_PAGE_SIZE", 50)
    monkeypatch.setattr(settings, "ADMIN_TOKEN", None)
    return settings


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db(clock):
    fake = FakeFirestore(clock=clock)
    fake.seed(CITIES_COLLECTION, SAN_DIEGO, {"slug": SAN_DIEGO, "name": "San Diego", "state": "CA"})
    fake.seed(CITIES_COLLECTION, SACRAMENTO, {"slug": SACRAMENTO, "name": "Sacramento", "state": "CA"})
    return fake


@pytest.fixture
def reviews(db):
    return ReviewService(db=db)


@pytest.fixture
def stats(db):
    return CityStatsService(db=db)


@pytest.fixture
def metrics(db):
    return MetricsService(db=db)


@pytest.fixture
def seed_safety(db):
    """Write a stamped 0-10 safety score straight into city_metrics."""
    def _seed(city_id: str, score: float):
        db.collection(METRICS_COLLECTION).document(city_id).set(
            {"cityId": city_id, "safetyScore": score, "safetyScoreScale": "0-10"},
            merge=True,
        )
    return _seed


@pytest.fixture
def client(db, monkeypatch):
    """TestClient wired to the fake Firestore with fresh service singletons."""
    monkeypatch.setattr(firebase_config, "db", db)
    monkeypatch.setattr(review_service, "_review_service", None)
    monkeypatch.setattr(city_service, "_city_service", None)
    monkeypatch.setattr(city_stats_service, "_city_stats_service", None)
    monkeypatch.setattr(metrics_service, "_metrics_service", None)

    from app.main import app
    return TestClient(app)
