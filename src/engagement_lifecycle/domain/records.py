"""Immutable snapshots passed between the store and the services.

The services never hold ORM instances: every decision is made against a
snapshot read immediately before it, and every write goes back through a
conditional store operation.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from engagement_lifecycle.domain.enums import (
    CancellationStatus,
    DeliveryStatus,
    EngagementStatus,
    EventType,
    PartyRole,
)


@dataclass(frozen=True)
class EngagementRecord:
    """One accepted unit of work between a requester and a contractor."""

    id: uuid.UUID
    requester_id: str
    contractor_id: str
    title: str
    status: EngagementStatus
    final_price: Decimal | None = None
    payment_intent_ref: str | None = None
    paid_at: datetime | None = None
    delivered_at: datetime | None = None
    warning_sent_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    refund_ref: str | None = None
    refunded_at: datetime | None = None

    def party_id(self, role: PartyRole) -> str:
        if role is PartyRole.REQUESTER:
            return self.requester_id
        return self.contractor_id


@dataclass(frozen=True)
class DeliveryRecord:
    id: uuid.UUID
    engagement_id: uuid.UUID
    status: DeliveryStatus
    created_at: datetime
    feedback: str | None = None
    resolved_at: datetime | None = None


@dataclass(frozen=True)
class CancellationRecord:
    """A pending (or resolved) bilateral request to end an engagement early."""

    id: uuid.UUID
    engagement_id: uuid.UUID
    initiator_role: PartyRole
    status: CancellationStatus
    created_at: datetime
    reason: str = ""
    warning_sent_at: datetime | None = None
    resolved_at: datetime | None = None

    @property
    def responder_role(self) -> PartyRole:
        return self.initiator_role.counterparty


@dataclass(frozen=True)
class StatusChange:
    """One atomic, conditional lifecycle write.

    The store applies everything here in a single transaction, and only if
    the engagement is still in `expected_status` (and, when
    `cancellation_request_id` is set, the request is still pending).
    Otherwise nothing is written and the store reports False.
    """

    engagement_id: uuid.UUID
    expected_status: EngagementStatus
    next_status: EngagementStatus
    event_type: EventType
    occurred_at: datetime
    fields: dict[str, Any] = field(default_factory=dict)
    delivery_resolution: DeliveryStatus | None = None
    delivery_feedback: str | None = None
    cancellation_request_id: uuid.UUID | None = None
    cancellation_resolution: CancellationStatus | None = None
    actor: str = "SYSTEM"
    metadata: dict[str, Any] = field(default_factory=dict)
