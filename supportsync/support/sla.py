"""SLA breach detection and priority escalation for support cases.

A case is in one of three overlapping states, tracked only through the
``sla`` map in its metadata: nominal, first-response breached and resolution
breached. Each breach is recorded once; re-evaluating a breached dimension is
a no-op. Evaluation is opportunistic: it runs whenever an event touches the
case, there is no background sweep.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from ..config import DEFAULT_FIRST_RESPONSE_MINUTES, DEFAULT_RESOLUTION_MINUTES, SlaSettings
from ..models import SupportCase

logger = logging.getLogger(__name__)

FIRST_RESPONSE = "first_response"
RESOLUTION = "resolution"


@dataclass(frozen=True)
class SlaPolicy:
    first_response_minutes: int = DEFAULT_FIRST_RESPONSE_MINUTES
    resolution_minutes: int = DEFAULT_RESOLUTION_MINUTES

    @classmethod
    def from_settings(cls, settings: SlaSettings) -> "SlaPolicy":
        return cls(
            first_response_minutes=max(int(settings.first_response_minutes), 1),
            resolution_minutes=max(int(settings.resolution_minutes), 1),
        )

    @property
    def first_response_threshold(self) -> dt.timedelta:
        return dt.timedelta(minutes=max(self.first_response_minutes, 1))

    @property
    def resolution_threshold(self) -> dt.timedelta:
        return dt.timedelta(minutes=max(self.resolution_minutes, 1))


@dataclass
class SlaEvaluation:
    """Outcome of one evaluation; ``breaches`` lists newly breached dimensions.

    ``first_escalation`` is set only for the evaluation that escalated the case
    for the first time; later breaches of the other dimension are recorded
    without it.
    """

    priority: str
    sla: dict[str, Any] = field(default_factory=dict)
    breaches: tuple[str, ...] = ()
    first_escalation: bool = False

    @property
    def escalated(self) -> bool:
        return bool(self.breaches)


def as_utc(value: dt.datetime | None) -> dt.datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def parse_timestamp(value: Any) -> dt.datetime | None:
    """Parse an ISO timestamp stored in metadata; ``None`` when unusable."""

    if isinstance(value, dt.datetime):
        return as_utc(value)
    if not isinstance(value, str) or not value:
        return None
    try:
        return as_utc(dt.datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        return None


def _minutes(delta: dt.timedelta) -> int:
    return round(delta.total_seconds() / 60)


def evaluate_sla(
    *,
    priority: str,
    first_response_at: dt.datetime | None,
    resolved_at: dt.datetime | None,
    opened_at: dt.datetime | None,
    last_customer_message_at: dt.datetime | None,
    sla: Mapping[str, Any] | None,
    now: dt.datetime,
    policy: SlaPolicy,
) -> SlaEvaluation:
    """Detect new breaches without touching any persistent state."""

    now = as_utc(now) or now
    record = dict(sla or {})
    breaches: list[str] = []

    if first_response_at is None and last_customer_message_at is not None:
        waited = now - as_utc(last_customer_message_at)
        if waited > policy.first_response_threshold and not record.get(
            "first_response_breached_at"
        ):
            record["first_response_breached_at"] = now.isoformat()
            record["first_response_delta_minutes"] = _minutes(waited)
            breaches.append(FIRST_RESPONSE)

    if resolved_at is None:
        anchor = as_utc(first_response_at) or as_utc(opened_at) or now
        open_for = now - anchor
        if open_for > policy.resolution_threshold and not record.get("resolution_breached_at"):
            record["resolution_breached_at"] = now.isoformat()
            record["resolution_delta_minutes"] = _minutes(open_for)
            breaches.append(RESOLUTION)

    first_escalation = bool(breaches) and not record.get("escalated_at")
    if breaches:
        record.setdefault("priority_before_sla", priority)
        record.setdefault("escalated_at", now.isoformat())
        record["last_escalated_at"] = now.isoformat()
        priority = "urgent"

    return SlaEvaluation(
        priority=priority,
        sla=record,
        breaches=tuple(breaches),
        first_escalation=first_escalation,
    )


def apply_sla_escalations(
    support_case: SupportCase, *, now: dt.datetime, policy: SlaPolicy
) -> SlaEvaluation:
    """Evaluate ``support_case`` and write any new breach back onto it."""

    metadata = dict(support_case.meta or {})
    evaluation = evaluate_sla(
        priority=support_case.priority,
        first_response_at=as_utc(support_case.first_response_at),
        resolved_at=as_utc(support_case.resolved_at),
        opened_at=as_utc(support_case.created_at),
        last_customer_message_at=parse_timestamp(metadata.get("last_customer_message_at")),
        sla=metadata.get("sla"),
        now=now,
        policy=policy,
    )
    if evaluation.escalated:
        logger.info(
            "Support case %s breached SLA (%s); priority %s -> urgent",
            support_case.id,
            ", ".join(evaluation.breaches),
            support_case.priority,
        )
        metadata["sla"] = evaluation.sla
        support_case.meta = metadata
        support_case.priority = evaluation.priority
    return evaluation


def is_sla_escalated(metadata: Mapping[str, Any] | None) -> bool:
    """Whether an SLA breach has already forced the case priority up."""

    sla = (metadata or {}).get("sla") or {}
    return bool(sla.get("first_response_breached_at") or sla.get("resolution_breached_at"))


__all__ = [
    "FIRST_RESPONSE",
    "RESOLUTION",
    "SlaEvaluation",
    "SlaPolicy",
    "apply_sla_escalations",
    "as_utc",
    "evaluate_sla",
    "is_sla_escalated",
    "parse_timestamp",
]
