"""Maps inbound webhook sources to their handlers."""

from __future__ import annotations

from reconciler.db.enums import WebhookProvider
from reconciler.services.webhooks.base import WebhookHandler
from reconciler.services.webhooks.crm import CrmWebhookHandler
from reconciler.services.webhooks.voice import VoiceWebhookHandler
from reconciler.services.webhooks.workflow import WorkflowCallbackHandler

HANDLERS: dict[WebhookProvider, WebhookHandler] = {
    WebhookProvider.CRM: CrmWebhookHandler(),
    WebhookProvider.VOICE: VoiceWebhookHandler(),
    WebhookProvider.WORKFLOW: WorkflowCallbackHandler(),
}


def get_handler(source: str | WebhookProvider) -> WebhookHandler:
    try:
        return HANDLERS[WebhookProvider(source)]
    except ValueError:
        raise KeyError(f"No webhook handler for source {source!r}") from None
