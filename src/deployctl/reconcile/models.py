"""Data models for infrastructure-state reconciliation."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol


class ParentStatus(str, Enum):
    """Outcome for the parent resource of a reconciliation."""

    SKIPPED = "skipped"
    ALREADY_MANAGED = "already_managed"
    IMPORTED = "imported"
    FATAL = "fatal"

    @property
    def is_fatal(self) -> bool:
        """Return ``True`` when the reconciliation must abort the run."""
        return self is ParentStatus.FATAL


class AttachmentStatus(str, Enum):
    """Outcome for a single dependent attachment import."""

    IMPORTED = "imported"
    ALREADY_ATTACHED = "already_attached"
    NOT_ATTACHED = "not_attached"
    FAILED = "failed"

    @property
    def is_success(self) -> bool:
        """Return ``True`` when the attachment was imported."""
        return self is AttachmentStatus.IMPORTED

    @property
    def is_unexpected(self) -> bool:
        """Return ``True`` for errors that are neither duplicates nor absences."""
        return self is AttachmentStatus.FAILED


@dataclass(slots=True, frozen=True)
class ResourceIdentity:
    """A provider-side entity and the state address it is tracked under."""

    name: str
    address: str


@dataclass(slots=True, frozen=True)
class AttachmentSpec:
    """A dependent grant reconciled after its parent."""

    address: str
    target: str

    def import_id(self, parent: ResourceIdentity) -> str:
        """Return the import identifier of this attachment for *parent*."""
        return f"{parent.name}/{self.target}"


@dataclass(slots=True, frozen=True)
class ImportOutcome:
    """Result of a single state import."""

    ok: bool
    detail: str = ""


@dataclass(slots=True, frozen=True)
class AttachmentResult:
    """Reconciliation outcome for one attachment."""

    spec: AttachmentSpec
    import_id: str
    status: AttachmentStatus
    detail: str = ""


@dataclass(slots=True, frozen=True)
class ReconcileResult:
    """Aggregate outcome for a parent and its attachments."""

    parent: ResourceIdentity
    parent_status: ParentStatus
    attachments: Sequence[AttachmentResult] = field(default_factory=tuple)
    detail: str = ""

    @property
    def is_fatal(self) -> bool:
        """Return ``True`` when the parent import failed."""
        return self.parent_status.is_fatal

    @property
    def import_count(self) -> int:
        """Return the number of import operations issued."""
        if self.parent_status is not ParentStatus.IMPORTED and not self.is_fatal:
            return 0
        return 1 + len(self.attachments)

    @property
    def warnings(self) -> list[str]:
        """Return the attachment addresses that were not imported."""
        return [
            f"{result.spec.address}: {result.status.value}"
            for result in self.attachments
            if not result.status.is_success
        ]


class IdentityLookup(Protocol):
    """Answers whether a named entity exists at the provider."""

    def exists(self, name: str) -> bool:
        """Return ``True`` when *name* exists."""
        ...


class StateStore(Protocol):
    """Read/write access to the provisioning tool's persisted state."""

    def is_tracked(self, address: str) -> bool:
        """Return ``True`` when *address* is in state; unknown addresses are ``False``."""
        ...

    def import_resource(self, address: str, external_id: str) -> ImportOutcome:
        """Adopt *external_id* into state at *address*."""
        ...


__all__ = [
    "AttachmentResult",
    "AttachmentSpec",
    "AttachmentStatus",
    "IdentityLookup",
    "ImportOutcome",
    "ParentStatus",
    "ReconcileResult",
    "ResourceIdentity",
    "StateStore",
]
