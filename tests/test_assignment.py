"""Tests for the auto-assignment pass and admin assignment tools."""
from datetime import datetime, timezone

import pytest

from booking_service import assignment
from booking_service.assignment import assign_manually, assign_partners, retry_assignment
from booking_service.exceptions import TransitionRejected
from booking_service.schemas import Actor
from booking_service.statuses import BookingKind, BookingStatus as S

from conftest import NOW, OUTSIDE, add_booking, add_catalog, add_partner, add_region, weekly

ADMIN = Actor(role="admin", id="99", name="ops")


def _fails_once(lookup):
    calls = []

    async def wrapper(db, service_id):
        calls.append(service_id)
        if len(calls) == 1:
            raise RuntimeError("catalog unavailable")
        return await lookup(db, service_id)

    return wrapper


class TestAssignPartners:

    async def test_assigns_eligible_available_partner(self, db, settings, notifier):
        service, _ = await add_catalog(db)
        region = await add_region(db)
        partner = await add_partner(db, regions=(region.id,), push_token="tok-1")
        booking, items = await add_booking(db, service)

        result = await assign_partners(db, booking, items, settings=settings, notifier=notifier, now=NOW)

        assert result == {items[0].id: partner.id}
        await db.refresh(items[0])
        assert items[0].assigned_partner_id == partner.id
        assert items[0].status == S.ASSIGNED
        await db.refresh(booking)
        assert booking.status == S.ASSIGNED
        await db.refresh(partner)
        assert partner.last_assigned_at is not None
        assert notifier.sent[0][0] == partner.id

    async def test_round_robin_prefers_least_recently_assigned(self, db, settings):
        service, _ = await add_catalog(db)
        await add_partner(db, name="Busy", phone="+919800000001",
                          last_assigned_at=datetime(2024, 6, 9, tzinfo=timezone.utc))
        fresh = await add_partner(db, name="Fresh", phone="+919800000002")
        booking, items = await add_booking(db, service)

        result = await assign_partners(db, booking, items, settings=settings, now=NOW)

        assert result[items[0].id] == fresh.id

    async def test_partner_outside_schedule_is_skipped(self, db, settings):
        service, _ = await add_catalog(db)
        await add_partner(db, availability=weekly(day="tuesday"))
        booking, items = await add_booking(db, service)

        result = await assign_partners(db, booking, items, settings=settings, now=NOW)

        assert result == {items[0].id: None}
        await db.refresh(items[0])
        assert items[0].status == S.PENDING
        assert items[0].assigned_partner_id is None

    async def test_unenforced_window_assigns_anyway(self, db, settings):
        settings.availability_window_enforced = False
        service, _ = await add_catalog(db)
        partner = await add_partner(db, availability=weekly(day="tuesday"))
        booking, items = await add_booking(db, service)

        result = await assign_partners(db, booking, items, settings=settings, now=NOW)

        assert result == {items[0].id: partner.id}

    async def test_booking_outside_all_regions_is_unrestricted(self, db, settings):
        service, _ = await add_catalog(db)
        region = await add_region(db)
        partner = await add_partner(db, regions=(region.id,))
        booking, items = await add_booking(db, service, coords=OUTSIDE)

        result = await assign_partners(db, booking, items, settings=settings, now=NOW)

        assert result[items[0].id] == partner.id

    async def test_region_mismatch_leaves_item_unassigned(self, db, settings):
        service, _ = await add_catalog(db)
        await add_region(db, name="Central")
        north = await add_region(db, name="North", polygon=[
            {"lat": 20, "lng": 70}, {"lat": 20, "lng": 71}, {"lat": 21, "lng": 71},
        ])
        await add_partner(db, regions=(north.id,))
        booking, items = await add_booking(db, service)

        result = await assign_partners(db, booking, items, settings=settings, now=NOW)

        assert result[items[0].id] is None

    async def test_no_coordinates_skips_booking(self, db, settings):
        service, _ = await add_catalog(db)
        await add_partner(db)
        booking, items = await add_booking(db, service, coords=None)

        result = await assign_partners(db, booking, items, settings=settings, now=NOW)

        assert result == {items[0].id: None}

    async def test_single_partner_can_take_two_items(self, db, settings):
        service, _ = await add_catalog(db)
        partner = await add_partner(db)
        booking, items = await add_booking(db, service, statuses=[S.PENDING, S.PENDING])

        result = await assign_partners(db, booking, items, settings=settings, now=NOW)

        assert list(result.values()) == [partner.id, partner.id]

    async def test_failing_item_does_not_block_the_others(self, db, settings, monkeypatch):
        service, _ = await add_catalog(db)
        partner = await add_partner(db)
        booking, items = await add_booking(db, service, statuses=[S.PENDING, S.PENDING])
        monkeypatch.setattr(assignment, "get_service", _fails_once(assignment.get_service))

        result = await assign_partners(db, booking, items, settings=settings, now=NOW)

        assert result == {items[0].id: None, items[1].id: partner.id}
        await db.refresh(items[0])
        assert items[0].status == S.PENDING
        await db.refresh(booking)
        assert booking.status == S.ASSIGNED

    async def test_later_status_is_not_overridden(self, db, settings):
        service, _ = await add_catalog(db)
        await add_partner(db)
        booking, items = await add_booking(db, service, statuses=[S.REACHED])

        await assign_partners(db, booking, items, settings=settings, now=NOW)

        await db.refresh(items[0])
        assert items[0].status == S.REACHED

    async def test_same_day_job_push_is_silent(self, db, settings, notifier):
        service, _ = await add_catalog(db)
        await add_partner(db, push_token="tok-1")
        booking, items = await add_booking(db, service)

        await assign_partners(db, booking, items, settings=settings, notifier=notifier, now=NOW)

        _, message = notifier.sent[0]
        assert message.sound is None
        assert message.data["type"] == "JOB_ASSIGNMENT"

    async def test_sos_push_uses_alarm(self, db, settings, notifier):
        service, _ = await add_catalog(db)
        await add_partner(db, push_token="tok-1")
        booking, items = await add_booking(db, service, kind=BookingKind.SOS,
                                           scheduled_date=None, scheduled_time=None)

        await assign_partners(db, booking, items, settings=settings, notifier=notifier, now=NOW)

        _, message = notifier.sent[0]
        assert message.sound == "ambulance_alarm"
        assert message.priority == "high"
        assert message.channel == "sos_alerts"


class TestAdminAssignment:

    async def test_retry_only_touches_unassigned_items(self, db, settings):
        service, _ = await add_catalog(db)
        booking, items = await add_booking(db, service, statuses=[S.PENDING, S.CANCELLED])
        partner = await add_partner(db)

        result = await retry_assignment(db, booking, settings=settings)

        assert result == {items[0].id: partner.id}

    async def test_manual_assignment_bypasses_eligibility(self, db, settings):
        service, _ = await add_catalog(db)
        electrician = await add_partner(db, services=("electrical",))
        booking, items = await add_booking(db, service)

        item = await assign_manually(db, items[0].id, electrician.id, ADMIN, settings=settings)

        assert item.assigned_partner_id == electrician.id
        assert item.status == S.ASSIGNED

    async def test_manual_assignment_refused_on_final_item(self, db, settings):
        service, _ = await add_catalog(db)
        partner = await add_partner(db)
        _, items = await add_booking(db, service, statuses=[S.COMPLETED])

        with pytest.raises(TransitionRejected):
            await assign_manually(db, items[0].id, partner.id, ADMIN, settings=settings)
