import pytest

from models.template import EventType, Trigger
from shared import time
from shared.triggers import TriggerService
from store.template_store import InMemoryTemplateStore, InMemoryTriggerStore


class RecordingOutbox:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    async def enqueue(self, recipient, body, user_id, template_id=None):
        if self.fail:
            raise RuntimeError("store down")
        self.sent.append((recipient, body, user_id, template_id))
        return "job-1"


def _trigger(template_id, trigger_id="t1", event=EventType.BUDGET_EXCEEDED, enabled=True, **conditions):
    return Trigger(
        id=trigger_id,
        name=f"trigger {trigger_id}",
        event_type=event,
        conditions=conditions,
        template_id=template_id,
        enabled=enabled,
        created_at=time.utcnow(),
    )


@pytest.fixture
def templates():
    return InMemoryTemplateStore()


@pytest.fixture
def triggers():
    return InMemoryTriggerStore()


@pytest.mark.asyncio
async def test_matching_trigger_queues_rendered_message(templates, triggers):
    tpl = templates.create("budget", "Budget {{category}} terlampaui: {{amount}}", ["category", "amount"])
    triggers.create(_trigger(tpl.id))
    outbox = RecordingOutbox()

    fired = await TriggerService(triggers, templates, outbox).execute(
        EventType.BUDGET_EXCEEDED,
        {"userId": "u1", "phoneNumber": "6281234567890", "category": "Makanan", "amount": "1.200.000"},
    )

    assert fired == 1
    assert outbox.sent == [("6281234567890", "Budget Makanan terlampaui: 1.200.000", "u1", tpl.id)]


@pytest.mark.asyncio
async def test_disabled_other_event_and_unmatched_are_skipped(templates, triggers):
    tpl = templates.create("budget", "hi", [])
    triggers.create(_trigger(tpl.id, "disabled", enabled=False))
    triggers.create(_trigger(tpl.id, "reminder", event=EventType.REMINDER))
    triggers.create(_trigger(tpl.id, "wallet", walletId="w9"))
    outbox = RecordingOutbox()

    fired = await TriggerService(triggers, templates, outbox).execute(
        EventType.BUDGET_EXCEEDED, {"userId": "u1", "phoneNumber": "6281234567890", "walletId": "w1"}
    )

    assert fired == 0
    assert outbox.sent == []


@pytest.mark.asyncio
async def test_missing_recipient_or_template_skips(templates, triggers):
    tpl = templates.create("budget", "hi", [])
    triggers.create(_trigger(tpl.id, "ok"))
    triggers.create(_trigger("gone", "orphan"))
    outbox = RecordingOutbox()
    service = TriggerService(triggers, templates, outbox)

    assert await service.execute(EventType.BUDGET_EXCEEDED, {"userId": "u1"}) == 0
    assert await service.execute(
        EventType.BUDGET_EXCEEDED, {"userId": "u1", "userPhoneNumber": "6281234567890"}
    ) == 1


@pytest.mark.asyncio
async def test_failing_trigger_does_not_stop_others(templates, triggers):
    tpl = templates.create("budget", "hi", [])
    triggers.create(_trigger(tpl.id))

    fired = await TriggerService(triggers, templates, RecordingOutbox(fail=True)).execute(
        EventType.BUDGET_EXCEEDED, {"userId": "u1", "phoneNumber": "6281234567890"}
    )

    assert fired == 0
