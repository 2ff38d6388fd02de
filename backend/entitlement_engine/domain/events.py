"""Canonical webhook events and the event-kind normalizer.

Whop emits the same semantic event under more than one name: a dot-joined
form ("payment.succeeded") and an underscore-joined form
("payment_succeeded"), plus legacy membership names ("membership.went_valid").
Every accepted spelling lives in EVENT_KIND_TABLE; adding a new spelling is
a one-line change there. normalize_kind() is total: anything not in the
table is UNKNOWN.

Pure functions with no I/O, fully unit-testable.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class CanonicalEventKind(str, Enum):
    """Closed set of event kinds the engine acts on."""

    PAYMENT_SUCCEEDED = "payment_succeeded"
    INVOICE_PAID = "invoice_paid"
    INVOICE_VOIDED = "invoice_voided"
    MEMBERSHIP_ACTIVATED = "membership_activated"
    MEMBERSHIP_DEACTIVATED = "membership_deactivated"
    UNKNOWN = "unknown"


EVENT_KIND_TABLE: dict[str, CanonicalEventKind] = {
    "payment.succeeded": CanonicalEventKind.PAYMENT_SUCCEEDED,
    "payment_succeeded": CanonicalEventKind.PAYMENT_SUCCEEDED,
    "invoice.paid": CanonicalEventKind.INVOICE_PAID,
    "invoice_paid": CanonicalEventKind.INVOICE_PAID,
    "invoice.voided": CanonicalEventKind.INVOICE_VOIDED,
    "invoice_voided": CanonicalEventKind.INVOICE_VOIDED,
    "membership.activated": CanonicalEventKind.MEMBERSHIP_ACTIVATED,
    "membership_activated": CanonicalEventKind.MEMBERSHIP_ACTIVATED,
    "membership.went_valid": CanonicalEventKind.MEMBERSHIP_ACTIVATED,
    "membership_went_valid": CanonicalEventKind.MEMBERSHIP_ACTIVATED,
    "membership.deactivated": CanonicalEventKind.MEMBERSHIP_DEACTIVATED,
    "membership_deactivated": CanonicalEventKind.MEMBERSHIP_DEACTIVATED,
    "membership.went_invalid": CanonicalEventKind.MEMBERSHIP_DEACTIVATED,
    "membership_went_invalid": CanonicalEventKind.MEMBERSHIP_DEACTIVATED,
}

# Kinds that create access and leave an audit row
GRANTING_KINDS = frozenset({
    CanonicalEventKind.PAYMENT_SUCCEEDED,
    CanonicalEventKind.INVOICE_PAID,
    CanonicalEventKind.MEMBERSHIP_ACTIVATED,
})

# Kinds routed to the revocation policy hook
REVOKING_KINDS = frozenset({
    CanonicalEventKind.INVOICE_VOIDED,
    CanonicalEventKind.MEMBERSHIP_DEACTIVATED,
})

# Metadata keys that may carry the purchased template id, in lookup order
RESOURCE_ID_KEYS = ("template_id", "templateId")


def normalize_kind(raw_kind: Any) -> CanonicalEventKind:
    """Map a sender event name onto a CanonicalEventKind. Never raises."""
    if not isinstance(raw_kind, str):
        return CanonicalEventKind.UNKNOWN
    return EVENT_KIND_TABLE.get(raw_kind.strip().lower(), CanonicalEventKind.UNKNOWN)


@dataclass(frozen=True)
class CanonicalEvent:
    """Normalized, sender-agnostic view of one webhook delivery."""

    kind: CanonicalEventKind
    raw_kind: str
    external_user_id: str | None
    external_reference_id: str | None
    amount: float | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def resource_id(self) -> str | None:
        """Purchased template id, checking each alias in RESOURCE_ID_KEYS."""
        for key in RESOURCE_ID_KEYS:
            value = self.metadata.get(key)
            if value:
                return value
        return None


def _first_str(payload: dict, *paths: str) -> str | None:
    """Return the first non-empty string found at any dotted path."""
    for path in paths:
        node: Any = payload
        for part in path.split("."):
            if not isinstance(node, dict):
                node = None
                break
            node = node.get(part)
        if node is not None and node != "":
            return str(node)
    return None


def _parse_amount(payload: dict) -> float | None:
    for key in ("amount", "final_amount", "total"):
        value = payload.get(key)
        if value is None or isinstance(value, bool):
            continue
        try:
            return float(value)
        except (TypeError, ValueError):
            continue
    return None


def _string_metadata(raw: Any) -> dict[str, str]:
    if not isinstance(raw, dict):
        return {}
    return {str(k): str(v) for k, v in raw.items() if v is not None}


def to_canonical_event(raw_kind: str, payload: dict) -> CanonicalEvent:
    """Build a CanonicalEvent from an envelope's kind and payload.

    Whop nests the user under "user" on newer payloads and flattens it to
    "user_id" on older ones; both are accepted.
    """
    return CanonicalEvent(
        kind=normalize_kind(raw_kind),
        raw_kind=raw_kind,
        external_user_id=_first_str(payload, "user_id", "user.id"),
        external_reference_id=_first_str(payload, "id", "membership_id", "membership.id"),
        amount=_parse_amount(payload),
        metadata=_string_metadata(payload.get("metadata")),
    )
