from datetime import datetime, timezone

from sqlalchemy import String, cast, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import ServicePartner


def norm(s: str) -> str:
    return (s or "").strip().lower()


def is_eligible(partner, service_code: str, matched_region_ids) -> bool:
    if not partner.is_active:
        return False

    if norm(service_code) not in {norm(s) for s in (partner.services or [])}:
        return False

    partner_regions = set(partner.service_regions or [])
    # a partner with no regions serves everywhere, even inside matched regions
    if not matched_region_ids or not partner_regions:
        return True
    return not partner_regions.isdisjoint(matched_region_ids)


def _as_utc(value: datetime) -> datetime:
    # some drivers hand back naive UTC timestamps
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def round_robin_key(partner):
    last = partner.last_assigned_at
    if last is None:
        return (0, datetime.min.replace(tzinfo=timezone.utc), partner.id or 0)
    return (1, _as_utc(last), partner.id or 0)


def order_for_round_robin(partners) -> list:
    """Never-assigned partners first, then least recently assigned."""
    return sorted(partners, key=round_robin_key)


async def eligible_partners(db: AsyncSession, service_code: str, matched_region_ids) -> list[ServicePartner]:
    # services is a JSON list of codes; match the quoted code in its text form
    stmt = select(ServicePartner).where(
        ServicePartner.is_active.is_(True),
        cast(ServicePartner.services, String).icontains(f'"{norm(service_code)}"', autoescape=True),
    )
    result = await db.execute(stmt)
    candidates = [
        p for p in result.scalars().all()
        if is_eligible(p, service_code, matched_region_ids)
    ]
    return order_for_round_robin(candidates)
