"""Postgres access: connection config + SQL migrations.

Postgres drivers are imported lazily inside functions so the in-memory backends (tests,
local development) run without a database.
"""

from __future__ import annotations
