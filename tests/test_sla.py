import datetime as dt

from conftest import NOW
from sqlalchemy import select

from supportsync.config import SlaSettings
from supportsync.models import SupportCase
from supportsync.support.sla import (
    FIRST_RESPONSE,
    RESOLUTION,
    SlaPolicy,
    evaluate_sla,
    is_sla_escalated,
    parse_timestamp,
)

POLICY = SlaPolicy(first_response_minutes=30, resolution_minutes=720)


def _evaluate(**overrides):
    params = {
        "priority": "medium",
        "first_response_at": None,
        "resolved_at": None,
        "opened_at": NOW - dt.timedelta(minutes=45),
        "last_customer_message_at": None,
        "sla": None,
        "now": NOW,
        "policy": POLICY,
    }
    params.update(overrides)
    return evaluate_sla(**params)


def test_first_response_breach_records_once():
    first = _evaluate(last_customer_message_at=NOW - dt.timedelta(minutes=40))

    assert first.breaches == (FIRST_RESPONSE,)
    assert first.priority == "urgent"
    assert first.sla["first_response_breached_at"] == NOW.isoformat()
    assert first.sla["first_response_delta_minutes"] == 40
    assert first.sla["priority_before_sla"] == "medium"

    second = _evaluate(
        priority=first.priority,
        last_customer_message_at=NOW - dt.timedelta(minutes=40),
        sla=first.sla,
        now=NOW + dt.timedelta(seconds=5),
    )

    assert second.escalated is False
    assert second.sla["first_response_breached_at"] == NOW.isoformat()
    assert second.sla["priority_before_sla"] == "medium"


def test_first_response_within_threshold_is_nominal():
    evaluation = _evaluate(last_customer_message_at=NOW - dt.timedelta(minutes=30))

    assert evaluation.escalated is False
    assert evaluation.priority == "medium"
    assert evaluation.sla == {}


def test_answered_case_never_breaches_first_response():
    evaluation = _evaluate(
        first_response_at=NOW - dt.timedelta(minutes=1),
        last_customer_message_at=NOW - dt.timedelta(hours=3),
    )

    assert FIRST_RESPONSE not in evaluation.breaches


def test_resolution_breach_anchors_on_first_response():
    answered_late = _evaluate(
        opened_at=NOW - dt.timedelta(minutes=800),
        first_response_at=NOW - dt.timedelta(minutes=100),
    )
    assert answered_late.escalated is False

    overdue = _evaluate(
        opened_at=NOW - dt.timedelta(minutes=800),
        first_response_at=NOW - dt.timedelta(minutes=721),
    )
    assert overdue.breaches == (RESOLUTION,)
    assert overdue.sla["resolution_delta_minutes"] == 721


def test_resolution_breach_falls_back_to_open_time():
    evaluation = _evaluate(opened_at=NOW - dt.timedelta(minutes=721), priority="high")

    assert evaluation.breaches == (RESOLUTION,)
    assert evaluation.sla["priority_before_sla"] == "high"


def test_resolved_case_is_not_evaluated_for_resolution():
    evaluation = _evaluate(
        opened_at=NOW - dt.timedelta(days=3), resolved_at=NOW - dt.timedelta(days=1)
    )

    assert evaluation.escalated is False


def test_both_dimensions_can_breach_and_keep_first_snapshot():
    first = _evaluate(last_customer_message_at=NOW - dt.timedelta(minutes=31))
    later = NOW + dt.timedelta(minutes=700)
    second = _evaluate(
        priority=first.priority,
        last_customer_message_at=NOW - dt.timedelta(minutes=31),
        sla=first.sla,
        now=later,
    )

    assert first.first_escalation is True
    assert second.breaches == (RESOLUTION,)
    assert second.first_escalation is False
    assert second.sla["priority_before_sla"] == "medium"
    assert second.sla["escalated_at"] == NOW.isoformat()
    assert second.sla["last_escalated_at"] == later.isoformat()
    assert is_sla_escalated({"sla": second.sla})


def test_policy_from_settings_clamps_to_one_minute():
    policy = SlaPolicy.from_settings(SlaSettings(first_response_minutes=0, resolution_minutes=-5))

    assert policy.first_response_threshold == dt.timedelta(minutes=1)
    assert policy.resolution_threshold == dt.timedelta(minutes=1)


def test_parse_timestamp_handles_iso_and_garbage():
    assert parse_timestamp("2024-05-01T12:00:00Z") == NOW
    assert parse_timestamp("2024-05-01T12:00:00") == NOW
    assert parse_timestamp("yesterday") is None
    assert parse_timestamp(None) is None


def _case(harness) -> SupportCase:
    with harness.session_factory() as session:
        return session.execute(select(SupportCase)).scalar_one()


def test_waiting_customer_escalates_and_notifies_once(harness, payloads):
    harness.send(payloads.conversation_event())
    result = harness.send(
        payloads.message_event(
            "m1", "Anyone there?", created_at=NOW - dt.timedelta(minutes=40)
        )
    )

    assert result.escalated is True
    support_case = _case(harness)
    assert support_case.priority == "urgent"
    breached_at = support_case.meta["sla"]["first_response_breached_at"]
    assert breached_at == NOW.isoformat()
    assert len(harness.notifier.sent) == 1
    notification = harness.notifier.sent[0]
    assert notification["title"] == "Support SLA escalation triggered"
    assert notification["priority"] == "critical"
    assert notification["metadata"]["support_case_id"] == support_case.id
    assert notification["metadata"]["chatwoot_conversation_id"] == "42"
    assert notification["metadata"]["breaches"] == ["first_response"]

    harness.clock.advance(seconds=30)
    again = harness.send(payloads.conversation_event("conversation_updated"))

    assert again.escalated is False
    assert _case(harness).meta["sla"]["first_response_breached_at"] == breached_at
    assert len(harness.notifier.sent) == 1


def test_second_breached_dimension_is_recorded_without_notifying(harness, payloads):
    harness.send(payloads.conversation_event())
    harness.send(
        payloads.message_event("m1", "Hello?", created_at=NOW - dt.timedelta(minutes=40))
    )
    assert len(harness.notifier.sent) == 1

    later = harness.clock.advance(minutes=721)
    result = harness.send(payloads.conversation_event("conversation_updated"))

    assert result.escalated is False
    assert len(harness.notifier.sent) == 1
    sla = _case(harness).meta["sla"]
    assert sla["first_response_breached_at"] == NOW.isoformat()
    assert sla["resolution_breached_at"] == later.isoformat()
    assert sla["escalated_at"] == NOW.isoformat()
    assert sla["last_escalated_at"] == later.isoformat()


def test_idle_case_breaches_resolution_on_next_event(harness, payloads):
    harness.send(payloads.conversation_event())
    harness.clock.advance(minutes=721)

    result = harness.send(payloads.conversation_event("conversation_updated"))

    assert result.escalated is True
    assert harness.notifier.sent[0]["metadata"]["breaches"] == ["resolution"]
    assert _case(harness).meta["sla"]["resolution_delta_minutes"] == 721


def test_escalated_priority_is_not_lowered_by_refresh(harness, payloads):
    harness.send(payloads.conversation_event(priority="low"))
    harness.clock.advance(minutes=721)
    harness.send(payloads.conversation_event("conversation_updated", priority="low"))
    assert _case(harness).priority == "urgent"

    harness.send(payloads.conversation_event("conversation_updated", priority="high"))

    support_case = _case(harness)
    assert support_case.priority == "urgent"
    assert support_case.meta["sla"]["priority_before_sla"] == "low"


def test_unescalated_priority_follows_conversation(harness, payloads):
    harness.send(payloads.conversation_event(priority="high"))
    harness.send(payloads.conversation_event("conversation_updated", priority="low"))

    assert _case(harness).priority == "low"
