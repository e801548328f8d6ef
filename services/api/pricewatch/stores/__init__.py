"""Data stores for persistence and caching.

Stores handle:
- PostgreSQL: DB session, product/price-history repository
- Redis: bounded batch-run history

No business/reconciliation logic in stores - that belongs in services.
"""
