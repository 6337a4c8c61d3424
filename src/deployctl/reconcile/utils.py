"""Utility helpers for serialising reconciliation results."""
from __future__ import annotations

from collections.abc import Mapping

from ..logging import sanitize_payload
from .models import ReconcileResult


def serialize_result(
    result: ReconcileResult,
    metadata: Mapping[str, object] | None = None,
) -> dict[str, object]:
    """Convert a reconcile result into a JSON-serialisable mapping."""
    parent_payload: dict[str, object] = {
        "name": result.parent.name,
        "address": result.parent.address,
        "status": result.parent_status.value,
    }
    if result.detail:
        parent_payload["detail"] = result.detail
    attachments_payload: list[dict[str, object]] = []
    for attachment in result.attachments:
        entry: dict[str, object] = {
            "address": attachment.spec.address,
            "import_id": attachment.import_id,
            "status": attachment.status.value,
        }
        if attachment.detail and not attachment.status.is_success:
            entry["detail"] = attachment.detail
        attachments_payload.append(entry)
    return {
        "parent": parent_payload,
        "attachments": attachments_payload,
        "imports": result.import_count,
        "fatal": result.is_fatal,
        "metadata": sanitize_payload(metadata) if metadata else {},
    }


__all__ = ["serialize_result"]
