"""
Services layer - Business logic goes here.

DESIGN PRINCIPLE:
- Services contain business logic, NOT routes
- Every write to city_stats goes through a transaction
- Livability is derived, never edited by hand
"""
