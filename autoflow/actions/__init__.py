"""autoflow.actions: message and tag side effects."""

from .executor import SUPPORTED_MESSAGE_TYPES, ActionExecutor, idempotency_key, render_template
from .gateway import HttpMessagingGateway, InMemoryGateway, MessagingGateway

__all__ = [
    "ActionExecutor",
    "HttpMessagingGateway",
    "InMemoryGateway",
    "MessagingGateway",
    "SUPPORTED_MESSAGE_TYPES",
    "idempotency_key",
    "render_template",
]
