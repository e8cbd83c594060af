"""
Marketplace sync package.

Pulls orders, stocks and product cards from marketplace and ERP APIs,
normalizes the payloads and upserts them into PostgreSQL, keeping a
resumable checkpoint and a run log per stream.
"""

__version__ = "1.0.0"
