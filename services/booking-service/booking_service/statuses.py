"""Status vocabularies shared by items, bookings and SOS alerts."""

import enum


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    ASSIGNED = "ASSIGNED"
    EN_ROUTE = "EN_ROUTE"
    REACHED = "REACHED"
    IN_PROGRESS = "IN_PROGRESS"
    ON_HOLD = "ON_HOLD"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REFUND_INITIATED = "REFUND_INITIATED"
    REFUNDED = "REFUNDED"


# Happy path, lowest first. Statuses outside this list have explicit rules.
CANONICAL_ORDER = [
    BookingStatus.PENDING,
    BookingStatus.CONFIRMED,
    BookingStatus.ASSIGNED,
    BookingStatus.EN_ROUTE,
    BookingStatus.REACHED,
    BookingStatus.IN_PROGRESS,
    BookingStatus.COMPLETED,
]

TERMINAL_STATUSES = frozenset({
    BookingStatus.COMPLETED,
    BookingStatus.CANCELLED,
    BookingStatus.REFUNDED,
})

# Statuses that close out an item for aggregation purposes.
SETTLED_STATUSES = TERMINAL_STATUSES | {BookingStatus.REFUND_INITIATED}


def canonical_index(status: BookingStatus) -> int | None:
    try:
        return CANONICAL_ORDER.index(status)
    except ValueError:
        return None


class BookingKind(str, enum.Enum):
    ASAP = "ASAP"
    SCHEDULED = "SCHEDULED"
    SOS = "SOS"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    REFUNDED = "REFUNDED"


class AlertStatus(str, enum.Enum):
    TRIGGERED = "TRIGGERED"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    PARTNER_ASSIGNED = "PARTNER_ASSIGNED"
    EN_ROUTE = "EN_ROUTE"
    REACHED = "REACHED"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    CANCELLED = "CANCELLED"


HOLD_REASONS = (
    "Waiting for parts/materials",
    "Customer unavailable",
    "Weather conditions",
    "Safety concern",
    "Scheduled break",
    "Other",
)

DAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
