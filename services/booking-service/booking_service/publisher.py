from shared.config import get_settings
from shared.rabbitmq import Publisher

from .db import session_factory
from .notifications import AdminBroadcaster, Notifier, PushSender

_publisher = None
_broadcaster = None
_notifier = None


def publisher() -> Publisher:
    global _publisher
    if _publisher is None:
        _publisher = Publisher(get_settings().rabbit_url)
    return _publisher


def broadcaster() -> AdminBroadcaster:
    global _broadcaster
    if _broadcaster is None:
        _broadcaster = AdminBroadcaster(publisher())
    return _broadcaster


def notifier() -> Notifier:
    global _notifier
    if _notifier is None:
        settings = get_settings()
        sender = PushSender(
            settings.push_gateway_url,
            settings.push_server_key,
            timeout=settings.push_timeout_seconds,
        )
        _notifier = Notifier(sender, session_factory())
    return _notifier


def get_notifier() -> Notifier:
    return notifier()


def get_broadcaster() -> AdminBroadcaster:
    return broadcaster()
