"""Structured logging helpers (PII-safe)."""

from typing import Any
from uuid import UUID


def build_log_context(
    *,
    org_id: str | UUID | None = None,
    pipeline_id: str | UUID | None = None,
    meeting_id: str | UUID | None = None,
    event_id: str | UUID | None = None,
    external_user_id: str | None = None,
    actor_id: str | UUID | None = None,
    outcome: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict for `extra=`."""
    context: dict[str, Any] = {}
    if org_id:
        context["org_id"] = str(org_id)
    if pipeline_id:
        context["pipeline_id"] = str(pipeline_id)
    if meeting_id:
        context["meeting_id"] = str(meeting_id)
    if event_id:
        context["event_id"] = str(event_id)
    if external_user_id:
        context["external_user_id"] = external_user_id
    if actor_id:
        context["actor_id"] = str(actor_id)
    if outcome:
        context["outcome"] = outcome
    return context
