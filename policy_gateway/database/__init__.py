"""
Persistence layer.

- models.py / repository.py: SQLAlchemy tables and a generic repository
- postgres.py: in-memory stores for local development and tests
- postgres_real.py: SQL-backed stores (DATABASE_URL)
- policy_lookup.py: read-only lookup over the USD / ZIG policy databases
- redis.py / redis_real.py: shared rate-table version
"""
