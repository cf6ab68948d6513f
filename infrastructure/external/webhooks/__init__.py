from .http_sender import HttpxWebhookSender

__all__ = ["HttpxWebhookSender"]
