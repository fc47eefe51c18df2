"""
Outbound notifications for call lifecycle analytics.
"""

from .webhook import CALL_EVENT_TYPES, NullNotifier, WebhookNotifier

__all__ = ["CALL_EVENT_TYPES", "NullNotifier", "WebhookNotifier"]
