"""Webhook intake and reconciliation."""

from .intake import WebhookIntake, parse_event
from .queue import QueueManager
from .reconciler import WebhookReconciler

__all__ = ["QueueManager", "WebhookIntake", "WebhookReconciler", "parse_event"]
