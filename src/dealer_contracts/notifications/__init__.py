"""Signing-link notification module."""

from .channels import (
    NotificationChannel,
    EmailChannel,
    WebhookChannel,
    SMSChannel,
    WhatsAppChannel,
    LogChannel,
)
from .notifier import Notifier, NotificationDispatcher
from .templates import MessageTemplate, TEMPLATES, get_template

__all__ = [
    'NotificationChannel',
    'EmailChannel',
    'WebhookChannel',
    'SMSChannel',
    'WhatsAppChannel',
    'LogChannel',
    'Notifier',
    'NotificationDispatcher',
    'MessageTemplate',
    'TEMPLATES',
    'get_template',
]
