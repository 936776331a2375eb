import logging

CONTEXT_KEYS = ("booking_id", "item_id", "partner_id", "status", "event")


class ContextFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        extras = []
        for key in CONTEXT_KEYS:
            value = getattr(record, key, None)
            if value not in (None, ""):
                extras.append(f"{key}={value}")
        base = super().format(record)
        if extras:
            return f"{base} | " + " ".join(extras)
        return base


def configure_logging(level: str = "INFO", service_name: str = "booking-service") -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(ContextFormatter(f"%(levelname)s:[{service_name}] %(name)s:%(message)s"))

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(handler)
