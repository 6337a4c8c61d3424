"""Idempotent import of pre-existing resources into persisted state."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence

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

LOGGER = logging.getLogger(__name__)

_ALREADY_ATTACHED_PATTERNS = (
    re.compile(r"resource already managed", re.IGNORECASE),
    re.compile(r"already exists in (the )?state", re.IGNORECASE),
)
_NOT_ATTACHED_PATTERNS = (
    re.compile(r"cannot import non-existent remote object", re.IGNORECASE),
    re.compile(r"NoSuchEntity"),
    re.compile(r"with name \S+ cannot be found", re.IGNORECASE),
)


def classify_attachment_failure(detail: str) -> AttachmentStatus:
    """Map the tool's error text for a failed attachment import to a status."""
    if any(pattern.search(detail) for pattern in _ALREADY_ATTACHED_PATTERNS):
        return AttachmentStatus.ALREADY_ATTACHED
    if any(pattern.search(detail) for pattern in _NOT_ATTACHED_PATTERNS):
        return AttachmentStatus.NOT_ATTACHED
    return AttachmentStatus.FAILED


class Reconciler:
    """Aligns persisted state with real-world existence without re-creating anything.

    Every collaborator call is synchronous and attempted exactly once; there
    are no retries. A parent that does not exist at the provider is never
    queried in state, since ``state show`` errors on unknown resources.
    """

    def __init__(self, lookup: IdentityLookup, state: StateStore) -> None:
        """Store the provider lookup and state store collaborators."""
        self._lookup = lookup
        self._state = state

    def reconcile(
        self,
        parent: ResourceIdentity,
        attachments: Sequence[AttachmentSpec] = (),
    ) -> ReconcileResult:
        """Import *parent* and its *attachments* when they exist but are untracked."""
        if not self._lookup.exists(parent.name):
            LOGGER.info("%s does not exist; nothing to import.", parent.name)
            return ReconcileResult(parent=parent, parent_status=ParentStatus.SKIPPED)

        if self._state.is_tracked(parent.address):
            LOGGER.info("%s already tracked at %s.", parent.name, parent.address)
            return ReconcileResult(parent=parent, parent_status=ParentStatus.ALREADY_MANAGED)

        outcome = self._state.import_resource(parent.address, parent.name)
        if not outcome.ok:
            LOGGER.error(
                "Import of %s into %s failed: %s", parent.name, parent.address, outcome.detail
            )
            return ReconcileResult(
                parent=parent,
                parent_status=ParentStatus.FATAL,
                detail=outcome.detail,
            )

        results = [self._import_attachment(parent, spec) for spec in attachments]
        return ReconcileResult(
            parent=parent,
            parent_status=ParentStatus.IMPORTED,
            attachments=tuple(results),
            detail=outcome.detail,
        )

    def _import_attachment(
        self,
        parent: ResourceIdentity,
        spec: AttachmentSpec,
    ) -> AttachmentResult:
        import_id = spec.import_id(parent)
        outcome: ImportOutcome = self._state.import_resource(spec.address, import_id)
        if outcome.ok:
            return AttachmentResult(spec, import_id, AttachmentStatus.IMPORTED, outcome.detail)

        status = classify_attachment_failure(outcome.detail)
        if status is AttachmentStatus.FAILED:
            LOGGER.warning("Unexpected failure importing %s: %s", spec.address, outcome.detail)
        else:
            LOGGER.info("Skipped %s (%s).", spec.address, status.value)
        return AttachmentResult(spec, import_id, status, outcome.detail)


__all__ = ["Reconciler", "classify_attachment_failure"]
