"""
Order-item transition table and its single validation entry point.

``TRANSITIONS`` maps each status to the statuses it may move to, and each
edge names the preconditions that must hold for it. ``check_transition``
applies the global rules first (terminal states, no regression along the
canonical order, no cancel/refund once work started) so callers get the most
specific rejection, then the table, then the edge's preconditions.
"""

import enum
import hmac
from dataclasses import dataclass, field

from .exceptions import OtpMismatch, TransitionRejected
from .statuses import BookingStatus as S, TERMINAL_STATUSES, canonical_index


class Requires(enum.Enum):
    PARTNER_IDENTITY = "partner_identity"    # actor must be the assigned partner
    ASSIGNED_PARTNER = "assigned_partner"    # item must carry a partner
    START_OTP = "start_otp"
    END_OTP = "end_otp"
    HOLD_REASON = "hold_reason"
    OPEN_HOLD = "open_hold"                  # resuming needs an unclosed hold entry


@dataclass(frozen=True)
class Edge:
    requires: frozenset = field(default_factory=frozenset)
    roles: frozenset | None = None  # None = any role


def _edge(*requires, roles=None) -> Edge:
    return Edge(frozenset(requires), frozenset(roles) if roles else None)


_STAFF = ("admin", "system")

_CANCEL = {
    S.CANCELLED: _edge(roles=_STAFF),
    S.REFUND_INITIATED: _edge(roles=_STAFF),
}

_START = _edge(Requires.START_OTP, Requires.ASSIGNED_PARTNER)

TRANSITIONS: dict[S, dict[S, Edge]] = {
    S.PENDING: {
        S.CONFIRMED: _edge(roles=_STAFF),
        S.ASSIGNED: _edge(Requires.ASSIGNED_PARTNER, roles=_STAFF),
        **_CANCEL,
    },
    S.CONFIRMED: {
        S.ASSIGNED: _edge(Requires.ASSIGNED_PARTNER, roles=_STAFF),
        **_CANCEL,
    },
    S.ASSIGNED: {
        S.EN_ROUTE: _edge(Requires.PARTNER_IDENTITY, roles=("partner",)),
        S.REACHED: _edge(Requires.PARTNER_IDENTITY, roles=("partner",)),
        # fixed-location jobs have no travel leg
        S.IN_PROGRESS: _START,
        **_CANCEL,
    },
    S.EN_ROUTE: {
        S.REACHED: _edge(Requires.PARTNER_IDENTITY, roles=("partner",)),
        S.IN_PROGRESS: _START,
        **_CANCEL,
    },
    S.REACHED: {
        S.IN_PROGRESS: _START,
        **_CANCEL,
    },
    S.IN_PROGRESS: {
        S.ON_HOLD: _edge(Requires.HOLD_REASON, roles=("partner", "admin")),
        S.COMPLETED: _edge(Requires.END_OTP, Requires.ASSIGNED_PARTNER),
    },
    S.ON_HOLD: {
        S.IN_PROGRESS: _edge(Requires.OPEN_HOLD, roles=("partner", "admin")),
    },
    S.REFUND_INITIATED: {
        S.REFUNDED: _edge(roles=_STAFF),
    },
    S.COMPLETED: {},
    S.CANCELLED: {},
    S.REFUNDED: {},
}

_RESTRICTED_TARGETS = frozenset({S.CANCELLED, S.REFUND_INITIATED, S.REFUNDED})
_STARTED = frozenset({S.IN_PROGRESS, S.ON_HOLD, S.COMPLETED})


@dataclass
class TransitionContext:
    actor_role: str
    actor_id: str | None = None
    otp: str | None = None
    hold_reason: str | None = None


def allowed_targets(current: S) -> set[S]:
    return set(TRANSITIONS.get(S(current), {}))


def _otp_matches(expected: str | None, presented: str | None) -> bool:
    if not expected or not presented:
        return False
    return hmac.compare_digest(str(expected), str(presented))


def check_transition(item, target, ctx: TransitionContext) -> Edge:
    """
    Validate moving ``item`` to ``target``; raise TransitionRejected if illegal.

    ``item`` needs ``status``, ``assigned_partner_id``, ``start_job_otp``,
    ``end_job_otp`` and ``hold_history``. Nothing is mutated.
    """
    current = S(item.status)
    target = S(target)

    if current in TERMINAL_STATUSES:
        raise TransitionRejected(current, target, f"{current.value} is a final status")

    if current == target:
        raise TransitionRejected(current, target, "item is already in this status")

    cur_idx = canonical_index(current)
    tgt_idx = canonical_index(target)
    if cur_idx is not None and tgt_idx is not None and tgt_idx < cur_idx:
        raise TransitionRejected(current, target, "status cannot move backwards")

    if target in _RESTRICTED_TARGETS and current in _STARTED:
        raise TransitionRejected(current, target, "work has already started")

    edge = TRANSITIONS[current].get(target)
    if edge is None:
        raise TransitionRejected(current, target, "transition not allowed")

    if edge.roles is not None and ctx.actor_role not in edge.roles:
        raise TransitionRejected(current, target, f"not allowed for role '{ctx.actor_role}'")

    for requirement in edge.requires:
        _check_requirement(requirement, item, current, target, ctx)

    return edge


def _check_requirement(requirement: Requires, item, current: S, target: S, ctx: TransitionContext):
    if requirement is Requires.PARTNER_IDENTITY:
        if ctx.actor_role != "partner" or item.assigned_partner_id is None \
                or str(item.assigned_partner_id) != str(ctx.actor_id):
            raise TransitionRejected(current, target, "only the assigned partner can report progress")

    elif requirement is Requires.ASSIGNED_PARTNER:
        if item.assigned_partner_id is None:
            raise TransitionRejected(current, target, "no partner is assigned")

    elif requirement is Requires.START_OTP:
        if not _otp_matches(item.start_job_otp, ctx.otp):
            raise OtpMismatch(current, target, "Start")

    elif requirement is Requires.END_OTP:
        if not _otp_matches(item.end_job_otp, ctx.otp):
            raise OtpMismatch(current, target, "End")

    elif requirement is Requires.HOLD_REASON:
        if not (ctx.hold_reason or "").strip():
            raise TransitionRejected(current, target, "a hold reason is required")

    elif requirement is Requires.OPEN_HOLD:
        open_entries = [e for e in (item.hold_history or []) if not e.get("hold_ended_at")]
        if not open_entries:
            raise TransitionRejected(current, target, "no open hold to resume")
