"""Infrastructure-state reconciliation."""

from __future__ import annotations

from .engine import Reconciler, classify_attachment_failure
from .models import (
    AttachmentResult,
    AttachmentSpec,
    AttachmentStatus,
    IdentityLookup,
    ImportOutcome,
    ParentStatus,
    ReconcileResult,
    ResourceIdentity,
    StateStore,
)
from .utils import serialize_result

__all__ = [
    "AttachmentResult",
    "AttachmentSpec",
    "AttachmentStatus",
    "IdentityLookup",
    "ImportOutcome",
    "ParentStatus",
    "ReconcileResult",
    "Reconciler",
    "ResourceIdentity",
    "StateStore",
    "classify_attachment_failure",
    "serialize_result",
]
