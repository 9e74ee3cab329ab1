"""Webhook payload parsing."""

from src.concierge.webhook.handler import SUPPORTED_ACTIONS, WebhookHandler

__all__ = ["SUPPORTED_ACTIONS", "WebhookHandler"]
