"""
Persistence layer: connection pool, batch upserts, checkpoints and run logs.
"""
