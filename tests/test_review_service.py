"""
Review coordinator: every create/update/delete moves the city aggregate and
its livability score in the same commit as the review itself.
"""

import pytest

from app.config.collections import REVIEWS_COLLECTION, STATS_COLLECTION
from app.core.errors import (
    AggregateCorruptionError,
    CityNotFoundError,
    NotFoundError,
    TransientStoreConflict,
    UnauthenticatedError,
    ValidationError,
)
from app.utils.security import make_review_id
from tests.conftest import SACRAMENTO, SAN_DIEGO, make_ratings


def _stats(db, city_id=SAN_DIEGO):
    return db.raw(STATS_COLLECTION, city_id)


class TestCreate:
    def test_first_review_creates_aggregate(self, reviews, db):
        result = reviews.upsert_review(SAN_DIEGO, "u1", {"ratings": make_ratings(8), "comment": " Sunny "})

        assert result["created"] is True
        assert result["reviewId"] == make_review_id("u1", SAN_DIEGO)
        assert result["review"]["comment"] == "Sunny"
        assert result["review"]["userId"] == "u1"
        assert result["review"]["createdAtIso"].endswith("Z")

        stats = _stats(db)
        assert stats["count"] == 1
        assert stats["sums"] == {k: 8.0 for k in make_ratings()}
        assert stats["livability"] == {"version": "v0", "score": 80}
        assert stats["revision"] == 1

    def test_review_document_shape(self, reviews, db):
        reviews.upsert_review(SAN_DIEGO, "u1", {"ratings": make_ratings(8)})
        raw = db.raw(REVIEWS_COLLECTION, make_review_id("u1", SAN_DIEGO))

        assert raw["userId"] == "u1"
        assert raw["cityId"] == SAN_DIEGO
        assert raw["ratings"] == make_ratings(8)
        assert raw["comment"] is None
        assert raw["createdAt"] == raw["updatedAt"]

    def test_livability_blends_current_metrics(self, reviews, db, seed_safety):
        seed_safety(SAN_DIEGO, 6.0)
        reviews.upsert_review(SAN_DIEGO, "u1", {"ratings": make_ratings(8)})
        assert _stats(db)["livability"]["score"] == 71

    def test_reviews_for_different_cities_are_independent(self, reviews, db):
        reviews.upsert_review(SAN_DIEGO, "u1", {"ratings": make_ratings(8)})
        reviews.upsert_review(SACRAMENTO, "u1", {"ratings": make_ratings(3)})

        assert _stats(db, SAN_DIEGO)["count"] == 1
        assert _stats(db, SACRAMENTO)["count"] == 1
        assert _stats(db, SACRAMENTO)["sums"]["overall"] == 3.0


class TestUpdate:
    def test_update_applies_only_the_difference(self, reviews, db):
        reviews.upsert_review(SAN_DIEGO, "u1", {"ratings": make_ratings(5)})
        reviews.upsert_review(SAN_DIEGO, "u2", {"ratings": make_ratings(7)})
        result = reviews.upsert_review(SAN_DIEGO, "u1", {"ratings": make_ratings(5, overall=8)})

        assert result["created"] is False
        stats = _stats(db)
        assert stats["count"] == 2
        assert stats["sums"]["overall"] == 15.0
        assert stats["sums"]["safety"] == 12.0
        assert stats["revision"] == 3

    def test_update_keeps_created_at(self, reviews, db, clock):
        first = reviews.upsert_review(SAN_DIEGO, "u1", {"ratings": make_ratings(5)})
        second = reviews.upsert_review(SAN_DIEGO, "u1", {"ratings": make_ratings(6), "comment": "better"})

        assert second["review"]["createdAtIso"] == first["review"]["createdAtIso"]
        assert second["review"]["updatedAtIso"] > first["review"]["updatedAtIso"]
        assert second["review"]["comment"] == "better"

    def test_identical_resubmission_leaves_sums_unchanged(self, reviews, db):
        reviews.upsert_review(SAN_DIEGO, "u1", {"ratings": make_ratings(6)})
        reviews.upsert_review(SAN_DIEGO, "u1", {"ratings": make_ratings(6)})
        stats = _stats(db)
        assert stats["count"] == 1
        assert stats["sums"]["overall"] == 6.0


class TestDelete:
    def test_delete_subtracts_review(self, reviews, db):
        reviews.upsert_review(SAN_DIEGO, "u1", {"ratings": make_ratings(5)})
        reviews.upsert_review(SAN_DIEGO, "u2", {"ratings": make_ratings(9)})

        result = reviews.delete_review(SAN_DIEGO, "u1")

        assert result == {"deleted": True, "reviewId": make_review_id("u1", SAN_DIEGO)}
        stats = _stats(db)
        assert stats["count"] == 1
        assert stats["sums"]["overall"] == 9.0
        assert db.raw(REVIEWS_COLLECTION, result["reviewId"]) is None

    def test_deleting_last_review_resets_to_empty(self, reviews, db, stats):
        reviews.upsert_review(SAN_DIEGO, "u1", {"ratings": make_ratings(5)})
        reviews.delete_review(SAN_DIEGO, "u1")

        view = stats.get_stats(SAN_DIEGO)
        assert view["count"] == 0
        assert view["sums"] == {k: 0.0 for k in make_ratings()}
        assert view["averages"]["overall"] is None
        assert view["livability"]["score"] is None

    def test_deleting_missing_review(self, reviews, db):
        with pytest.raises(NotFoundError):
            reviews.delete_review(SAN_DIEGO, "u1")
        assert _stats(db) is None

    def test_second_delete_is_not_found(self, reviews):
        reviews.upsert_review(SAN_DIEGO, "u1", {"ratings": make_ratings(5)})
        reviews.delete_review(SAN_DIEGO, "u1")
        with pytest.raises(NotFoundError):
            reviews.delete_review(SAN_DIEGO, "u1")

    def test_corrupted_aggregate_is_reported_not_clamped(self, reviews, db):
        reviews.upsert_review(SAN_DIEGO, "u1", {"ratings": make_ratings(5)})
        # simulate an earlier lost update
        db.collection(STATS_COLLECTION).document(SAN_DIEGO).set(
            {"sums": {"overall": 2.0}}, merge=True
        )

        with pytest.raises(AggregateCorruptionError) as exc_info:
            reviews.delete_review(SAN_DIEGO, "u1")

        assert exc_info.value.key == "overall"
        assert db.raw(REVIEWS_COLLECTION, make_review_id("u1", SAN_DIEGO)) is not None
        assert _stats(db)["sums"]["overall"] == 2.0


class TestRejections:
    @pytest.mark.parametrize("bad", [0, 11, 7.5])
    def test_invalid_rating_writes_nothing(self, reviews, db, bad):
        with pytest.raises(ValidationError) as exc_info:
            reviews.upsert_review(SAN_DIEGO, "u1", {"ratings": make_ratings(5, cost=bad)})

        assert exc_info.value.errors
        assert db.docs_in(REVIEWS_COLLECTION) == {}
        assert _stats(db) is None
        assert db.commit_attempts == 0

    def test_unknown_city(self, reviews, db):
        with pytest.raises(CityNotFoundError):
            reviews.upsert_review("atlantis-ca", "u1", {"ratings": make_ratings()})
        assert db.docs_in(REVIEWS_COLLECTION) == {}

    @pytest.mark.parametrize("user_id", [None, "", "   "])
    def test_caller_is_required(self, reviews, user_id):
        with pytest.raises(UnauthenticatedError):
            reviews.upsert_review(SAN_DIEGO, user_id, {"ratings": make_ratings()})


class TestContention:
    def test_interleaved_writer_forces_a_retry(self, reviews, db):
        def competing_write(transaction):
            db.before_commit = None
            reviews.upsert_review(SAN_DIEGO, "u2", {"ratings": make_ratings(4)})

        db.before_commit = competing_write
        reviews.upsert_review(SAN_DIEGO, "u1", {"ratings": make_ratings(8)})

        stats = _stats(db)
        assert db.aborted_commits == 1
        assert stats["count"] == 2
        assert stats["sums"]["overall"] == 12.0
        assert stats["livability"]["score"] == 60

    def test_gives_up_after_retry_budget(self, reviews, db, test_settings):
        def always_conflict(transaction):
            db.collection(STATS_COLLECTION).document(SAN_DIEGO).set({"touched": True}, merge=True)

        db.before_commit = always_conflict

        with pytest.raises(TransientStoreConflict) as exc_info:
            reviews.upsert_review(SAN_DIEGO, "u1", {"ratings": make_ratings(8)})

        assert exc_info.value.attempts == test_settings.TRANSACTION_MAX_ATTEMPTS
        assert db.aborted_commits == test_settings.TRANSACTION_MAX_ATTEMPTS
        assert db.docs_in(REVIEWS_COLLECTION) == {}

    def test_writes_to_other_cities_do_not_conflict(self, reviews, db):
        def other_city_write(transaction):
            db.before_commit = None
            reviews.upsert_review(SACRAMENTO, "u2", {"ratings": make_ratings(4)})

        db.before_commit = other_city_write
        reviews.upsert_review(SAN_DIEGO, "u1", {"ratings": make_ratings(8)})

        assert db.aborted_commits == 0
        assert _stats(db, SAN_DIEGO)["count"] == 1
        assert _stats(db, SACRAMENTO)["count"] == 1


class TestReads:
    def test_get_my_review(self, reviews):
        assert reviews.get_my_review(SAN_DIEGO, "u1")["review"] is None
        reviews.upsert_review(SAN_DIEGO, "u1", {"ratings": make_ratings(8)})
        mine = reviews.get_my_review(SAN_DIEGO, "u1")
        assert mine["review"]["userId"] == "u1"

    def test_public_review_hides_author(self, reviews):
        created = reviews.upsert_review(SAN_DIEGO, "u1", {"ratings": make_ratings(8)})
        public = reviews.get_review(SAN_DIEGO, created["reviewId"])
        assert "userId" not in public
        assert public["id"] == created["reviewId"]

    def test_review_from_another_city_is_not_found(self, reviews):
        created = reviews.upsert_review(SAN_DIEGO, "u1", {"ratings": make_ratings(8)})
        with pytest.raises(NotFoundError):
            reviews.get_review(SACRAMENTO, created["reviewId"])

    def test_list_user_reviews_newest_update_first(self, reviews):
        reviews.upsert_review(SAN_DIEGO, "u1", {"ratings": make_ratings(8)})
        reviews.upsert_review(SACRAMENTO, "u1", {"ratings": make_ratings(3)})
        reviews.upsert_review(SAN_DIEGO, "u1", {"ratings": make_ratings(9)})
        reviews.upsert_review(SAN_DIEGO, "u2", {"ratings": make_ratings(2)})

        mine = reviews.list_user_reviews("u1")["reviews"]
        assert [r["cityId"] for r in mine] == [SAN_DIEGO, SACRAMENTO]
        assert all(r["userId"] == "u1" for r in mine)


def test_update_moves_safety_sum_by_exact_delta(reviews, db):
    reviews.upsert_review(SAN_DIEGO, "u1", {"ratings": make_ratings(5)})
    before = _stats(db)
    reviews.upsert_review(SAN_DIEGO, "u1", {"ratings": make_ratings(5, safety=8)})
    after = _stats(db)

    assert after["sums"]["safety"] - before["sums"]["safety"] == 3.0
    assert after["count"] == before["count"] == 1
    assert after["sums"]["overall"] == before["sums"]["overall"]
