"""Schedule management package.

This package contains the push-notification schedule service that:
- Decodes cron patterns into the next execution instant (croniter).
- Derives caller identity from Firebase ID tokens and an audience allow-list.
- Persists schedules with owner-scoped, single-statement writes (SQLAlchemy).
- Exposes create/list/update/delete over FastAPI and as FastMCP tools.
"""
