"""Business-logic layer for the alert lifecycle (MongoDB-backed).

Lifecycle engine:
- rule_catalog.py (category -> policy snapshot, atomic reload)
- transitions.py (guarded status changes)
- escalation.py (inline escalation on ingest)
- auto_close.py (periodic sweeper and its background loop)
- cache.py (mutation hook for cached aggregates)

Request-facing services:
- alerts_service.py (ingest, resolve, get, list)
- rules_service.py (catalog view and reload)
"""

# Import side-effects are intentionally avoided here; modules are imported by routers/services as needed.
