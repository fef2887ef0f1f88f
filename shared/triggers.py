import logging
from typing import Any, Dict, Mapping, Optional

from models.template import EventType, Trigger, TriggerConditions
from shared.delivery import DeliveryPipeline
from shared.templates import render_template
from store.template_store import TemplateStore, TriggerStore

logger = logging.getLogger(__name__)


def conditions_match(conditions: TriggerConditions, data: Mapping[str, Any]) -> bool:
    if conditions.wallet_id and data.get("walletId") != conditions.wallet_id:
        return False
    if conditions.category_id and data.get("categoryId") != conditions.category_id:
        return False
    if conditions.amount_threshold is not None:
        try:
            amount = float(data.get("amount") or 0)
        except (TypeError, ValueError):
            amount = 0.0
        if amount < conditions.amount_threshold:
            return False
    if conditions.transaction_type and data.get("transactionType") != conditions.transaction_type.value:
        return False
    return True


class TriggerService:
    """Turns application events into templated WhatsApp messages."""

    def __init__(self, triggers: TriggerStore, templates: TemplateStore, outbox: DeliveryPipeline):
        self.triggers = triggers
        self.templates = templates
        self.outbox = outbox

    async def execute(self, event_type: EventType, data: Dict[str, Any]) -> int:
        """Fire every enabled trigger of `event_type` whose conditions match. Returns how many queued a message."""
        logger.info("Executing triggers for event: %s", event_type.value)
        fired = 0
        for trigger in self.triggers.list(event_type=event_type, enabled_only=True):
            try:
                if await self._fire(trigger, data):
                    fired += 1
            except Exception:
                logger.exception("Error executing trigger %s", trigger.name)
        return fired

    async def _fire(self, trigger: Trigger, data: Dict[str, Any]) -> bool:
        if not conditions_match(trigger.conditions, data):
            return False

        phone: Optional[str] = data.get("phoneNumber") or data.get("userPhoneNumber")
        user_id: Optional[str] = data.get("userId")
        if not phone or not user_id:
            logger.warning("Trigger %s skipped: missing phoneNumber or userId", trigger.name)
            return False

        template = self.templates.get(trigger.template_id)
        if template is None:
            logger.warning("Trigger %s skipped: template %s not found", trigger.name, trigger.template_id)
            return False

        body = render_template(template.content, data)
        await self.outbox.enqueue(phone, body, user_id, template_id=template.id)
        logger.info("Trigger %s executed successfully", trigger.name)
        return True
