from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config import Settings, get_settings

from . import assignment, bookings, partners, transitions
from .db import get_db
from .lookups import booking_items, require_booking_by_ref
from .publisher import get_broadcaster, get_notifier
from .rbac import partner_id_of, role_required
from .schemas import (
    Actor,
    AdminStatusUpdate,
    BookingResponse,
    CreateBookingRequest,
    CreatePartnerRequest,
    HoldRequest,
    JobView,
    ManualAssignRequest,
    OrderItemResponse,
    OtpRequest,
    PartnerResponse,
    ProgressUpdate,
    RescheduleRequest,
    SetAvailability,
    UpdatePartnerRequest,
)
from .status_sync import sync_booking_status

router = APIRouter()

customer_or_admin = role_required("customer", "admin")
admin_only = role_required("admin")
partner_only = role_required("partner")


async def _booking_view(db: AsyncSession, booking) -> BookingResponse:
    return bookings.booking_response(booking, await booking_items(db, booking.id))


# ---- Bookings ----

@router.post("/bookings", response_model=BookingResponse, status_code=201)
async def create_booking(
    data: CreateBookingRequest,
    actor: Actor = Depends(role_required("customer")),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    notifier=Depends(get_notifier),
    broadcaster=Depends(get_broadcaster),
):
    booking = await bookings.create_booking(
        db, actor.id, data, settings=settings, notifier=notifier, broadcaster=broadcaster
    )
    return await _booking_view(db, booking)


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
async def get_booking(booking_id: str, actor: Actor = Depends(customer_or_admin), db: AsyncSession = Depends(get_db)):
    booking = await require_booking_by_ref(db, booking_id)
    bookings.ensure_visible(booking, actor)
    return await _booking_view(db, booking)


@router.post("/bookings/{booking_id}/reschedule", response_model=BookingResponse)
async def reschedule_booking(
    booking_id: str,
    data: RescheduleRequest,
    actor: Actor = Depends(customer_or_admin),
    db: AsyncSession = Depends(get_db),
):
    booking = await require_booking_by_ref(db, booking_id)
    bookings.ensure_visible(booking, actor)
    booking = await bookings.reschedule_booking(db, booking, data, actor)
    return await _booking_view(db, booking)


# ---- Admin ----

@router.post("/admin/bookings/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: str,
    actor: Actor = Depends(admin_only),
    db: AsyncSession = Depends(get_db),
    broadcaster=Depends(get_broadcaster),
):
    booking = await require_booking_by_ref(db, booking_id)
    booking = await bookings.cancel_booking(db, booking, actor, broadcaster=broadcaster)
    return await _booking_view(db, booking)


@router.post("/admin/bookings/{booking_id}/assign", response_model=BookingResponse)
async def retry_assignment(
    booking_id: str,
    actor: Actor = Depends(admin_only),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    notifier=Depends(get_notifier),
    broadcaster=Depends(get_broadcaster),
):
    booking = await require_booking_by_ref(db, booking_id)
    await assignment.retry_assignment(
        db, booking, settings=settings, notifier=notifier, broadcaster=broadcaster
    )
    await db.refresh(booking)
    return await _booking_view(db, booking)


@router.post("/admin/bookings/{booking_id}/sync", response_model=BookingResponse)
async def sync_booking(
    booking_id: str,
    actor: Actor = Depends(admin_only),
    db: AsyncSession = Depends(get_db),
    broadcaster=Depends(get_broadcaster),
):
    booking = await require_booking_by_ref(db, booking_id)
    await sync_booking_status(db, booking.id, actor, broadcaster=broadcaster)
    await db.refresh(booking)
    return await _booking_view(db, booking)


@router.post("/admin/items/{item_id}/assign", response_model=OrderItemResponse)
async def assign_item(
    item_id: int,
    data: ManualAssignRequest,
    actor: Actor = Depends(admin_only),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    notifier=Depends(get_notifier),
    broadcaster=Depends(get_broadcaster),
):
    item = await assignment.assign_manually(
        db, item_id, data.partner_id, actor, settings=settings, notifier=notifier, broadcaster=broadcaster
    )
    return bookings.item_response(item)


@router.patch("/admin/items/{item_id}/status", response_model=OrderItemResponse)
async def set_item_status(
    item_id: int,
    data: AdminStatusUpdate,
    actor: Actor = Depends(admin_only),
    db: AsyncSession = Depends(get_db),
    broadcaster=Depends(get_broadcaster),
):
    item = await transitions.transition_item(db, item_id, data.status, actor, broadcaster=broadcaster)
    return bookings.item_response(item)


@router.post("/admin/partners", response_model=PartnerResponse, status_code=201)
async def create_partner(data: CreatePartnerRequest, actor: Actor = Depends(admin_only), db: AsyncSession = Depends(get_db)):
    partner = await partners.create_partner(db, data)
    return partners.partner_response(partner)


@router.patch("/admin/partners/{partner_id}", response_model=PartnerResponse)
async def update_partner(
    partner_id: int,
    data: UpdatePartnerRequest,
    actor: Actor = Depends(admin_only),
    db: AsyncSession = Depends(get_db),
):
    partner = await partners.update_partner(db, partner_id, data)
    return partners.partner_response(partner)


@router.put("/admin/partners/{partner_id}/availability", response_model=PartnerResponse)
async def set_partner_availability(
    partner_id: int,
    data: SetAvailability,
    actor: Actor = Depends(admin_only),
    db: AsyncSession = Depends(get_db),
):
    partner = await partners.set_availability(db, partner_id, data.availability)
    return partners.partner_response(partner)


# ---- Partner app ----

@router.get("/partner/jobs", response_model=List[JobView])
async def list_jobs(active: bool = False, actor: Actor = Depends(partner_only), db: AsyncSession = Depends(get_db)):
    return await partners.partner_jobs(db, partner_id_of(actor), active_only=active)


@router.put("/partner/availability", response_model=PartnerResponse)
async def set_own_availability(data: SetAvailability, actor: Actor = Depends(partner_only), db: AsyncSession = Depends(get_db)):
    partner = await partners.set_availability(db, partner_id_of(actor), data.availability)
    return partners.partner_response(partner)


@router.patch("/partner/jobs/{item_id}/status", response_model=OrderItemResponse)
async def update_job_status(
    item_id: int,
    data: ProgressUpdate,
    actor: Actor = Depends(partner_only),
    db: AsyncSession = Depends(get_db),
    broadcaster=Depends(get_broadcaster),
):
    item = await transitions.report_progress(db, item_id, data.status, actor, broadcaster=broadcaster)
    return bookings.item_response(item)


@router.post("/partner/jobs/{item_id}/start", response_model=OrderItemResponse)
async def start_job(
    item_id: int,
    data: OtpRequest,
    actor: Actor = Depends(partner_only),
    db: AsyncSession = Depends(get_db),
    broadcaster=Depends(get_broadcaster),
):
    item = await transitions.start_job(db, item_id, data.otp, actor, broadcaster=broadcaster)
    return bookings.item_response(item)


@router.post("/partner/jobs/{item_id}/end", response_model=OrderItemResponse)
async def end_job(
    item_id: int,
    data: OtpRequest,
    actor: Actor = Depends(partner_only),
    db: AsyncSession = Depends(get_db),
    broadcaster=Depends(get_broadcaster),
):
    item = await transitions.end_job(db, item_id, data.otp, actor, broadcaster=broadcaster)
    return bookings.item_response(item)


@router.post("/partner/jobs/{item_id}/hold", response_model=OrderItemResponse)
async def hold_job(
    item_id: int,
    data: HoldRequest,
    actor: Actor = Depends(partner_only),
    db: AsyncSession = Depends(get_db),
    broadcaster=Depends(get_broadcaster),
):
    item = await transitions.hold_job(db, item_id, data.reason, actor, remark=data.remark, broadcaster=broadcaster)
    return bookings.item_response(item)


@router.post("/partner/jobs/{item_id}/resume", response_model=OrderItemResponse)
async def resume_job(
    item_id: int,
    actor: Actor = Depends(partner_only),
    db: AsyncSession = Depends(get_db),
    broadcaster=Depends(get_broadcaster),
):
    item = await transitions.resume_job(db, item_id, actor, broadcaster=broadcaster)
    return bookings.item_response(item)
