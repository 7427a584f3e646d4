"""
tests/integration/
~~~~~~~~~~~~~~~~~~
Integration tests that call the live Google Places API.

Skipped by default. To run them:

    INTEGRATION_TESTS=1 GOOGLE_PLACES_API_KEY=... pytest tests/integration/ -v

Each call is billed against the key's quota; keep the suite small.
"""
