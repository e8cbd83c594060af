"""
Extraction layer: HTTP client, rate limiting, retries, pagination and
one adapter per provider.
"""
