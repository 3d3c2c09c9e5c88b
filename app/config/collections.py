"""
Firestore collection names.

cities        keyed by city slug
reviews       keyed by make_review_id(userId, cityId)
city_stats    CityAggregate, keyed by cityId
city_metrics  MetricsDocument, keyed by cityId
"""

CITIES_COLLECTION = "cities"
REVIEWS_COLLECTION = "reviews"
STATS_COLLECTION = "city_stats"
METRICS_COLLECTION = "city_metrics"
