"""Identifier helpers: filesystem-safe slugs, run ids and plan ids."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Pattern

__all__ = ["is_safe_slug", "make_run_id", "plan_id_for_run", "slugify"]

_SLUG_PATTERN: Pattern[str] = re.compile(r"[^a-z0-9_.-]+")
_HYPHEN_COLLAPSE: Pattern[str] = re.compile(r"-{2,}")
_SAFE_SLUG: Pattern[str] = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")

RUN_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
PLAN_ID_BODY_LENGTH = 30


def slugify(value: str | None, *, fallback: str = "app", max_length: int = 64) -> str:
    """Normalize ``value`` into a lowercase, filesystem-friendly slug."""
    source = (value or "").strip().lower() or fallback
    slug = _HYPHEN_COLLAPSE.sub("-", _SLUG_PATTERN.sub("-", source)).strip("-")
    if not slug:
        slug = fallback
    return slug[:max_length].rstrip("-") or fallback


def is_safe_slug(value: str) -> bool:
    """Return ``True`` when ``value`` can be used as a single path segment."""
    if not value or value in {".", ".."} or ".." in value:
        return False
    return bool(_SAFE_SLUG.match(value))


def make_run_id(flow: str, item_id: int, now: datetime) -> str:
    """Build ``<yyyyMMdd_HHmmss>_<flow>_item-<id>`` from a UTC timestamp."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    stamp = now.astimezone(timezone.utc).strftime(RUN_TIMESTAMP_FORMAT)
    return f"{stamp}_{flow}_item-{item_id}"


def plan_id_for_run(run_id: str) -> str:
    """Derive the implementation plan id from a run id (no random component)."""
    body = run_id.replace("_", "-")[:PLAN_ID_BODY_LENGTH]
    return f"PLAN-{body}"
