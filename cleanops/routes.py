"""
HTTP routes for the cleaning operations API.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict
from typing import Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile

from cleanops import catalog
from cleanops import cleanings as cleaning_service
from cleanops import issues as issue_service
from cleanops import notifications as notification_service
from cleanops import orders as order_service
from cleanops import properties as property_service
from cleanops import ratings as rating_service
from cleanops.catalog import Holiday, ServiceType
from cleanops.config import get_settings
from cleanops.db import DbClient
from cleanops.dependencies import (
    get_current_user,
    get_db_client,
    get_notifier,
    get_storage_client,
    require_admin,
)
from cleanops.errors import PermissionDeniedError, UploadTooLargeError
from cleanops.notifications import Notifier
from cleanops.pricing import calculate_cleaning_price, calculate_estimated_duration
from cleanops.schemas import (
    AssignOperatorRequest,
    AssignRiderRequest,
    CancelCleaningRequest,
    CleaningCreateRequest,
    CompleteCleaningRequest,
    HolidayRequest,
    InventoryItemRequest,
    IssueCreateRequest,
    IssueUpdateRequest,
    LinenConfigRequest,
    MoveCleaningRequest,
    NotificationActionRequest,
    OrderStatusRequest,
    PriceQuoteRequest,
    ProductRequestCreate,
    PropertyRequest,
    PushTokenRequest,
    RatingCreateRequest,
    ServiceTypeRequest,
    StartCleaningResponse,
    UploadPhotoResponse,
    UrgencyRequest,
    UserCreateRequest,
    WizardUpdateRequest,
)
from cleanops.storage import StorageClient
from cleanops.types import PROPERTIES, CurrentUser

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Cleanings


@router.get("/cleanings")
def list_cleanings(
    property_id: Optional[str] = None,
    status: Optional[str] = None,
    operator_id: Optional[str] = None,
    date: Optional[str] = None,
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(get_current_user),
):
    return cleaning_service.list_cleanings(
        db, user, property_id=property_id, status=status, operator_id=operator_id, day=date
    )


@router.post("/cleanings", status_code=201)
def create_cleaning(
    payload: CleaningCreateRequest,
    db: DbClient = Depends(get_db_client),
    notifier: Notifier = Depends(get_notifier),
    user: CurrentUser = Depends(get_current_user),
):
    record = cleaning_service.create_cleaning(db, notifier, user, payload.model_dump())
    return {"success": True, "cleaning": record.as_dict()}


@router.get("/cleanings/{cleaning_id}")
def get_cleaning(
    cleaning_id: str,
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(get_current_user),
):
    return {"cleaning": cleaning_service.get_cleaning(db, user, cleaning_id)}


@router.post("/cleanings/{cleaning_id}/assign")
def assign_operator(
    cleaning_id: str,
    payload: AssignOperatorRequest,
    db: DbClient = Depends(get_db_client),
    notifier: Notifier = Depends(get_notifier),
    user: CurrentUser = Depends(get_current_user),
):
    record = cleaning_service.assign_operator(
        db, notifier, user, cleaning_id, payload.operator_id
    )
    return {"success": True, "cleaning": record.as_dict()}


@router.delete("/cleanings/{cleaning_id}/assign/{operator_id}")
def unassign_operator(
    cleaning_id: str,
    operator_id: str,
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(get_current_user),
):
    record = cleaning_service.unassign_operator(db, user, cleaning_id, operator_id)
    return {"success": True, "cleaning": record.as_dict()}


@router.post("/cleanings/{cleaning_id}/start", response_model=StartCleaningResponse)
def start_cleaning(
    cleaning_id: str,
    db: DbClient = Depends(get_db_client),
    notifier: Notifier = Depends(get_notifier),
    user: CurrentUser = Depends(get_current_user),
):
    return cleaning_service.start_cleaning(db, notifier, user, cleaning_id)


@router.post("/cleanings/{cleaning_id}/complete")
def complete_cleaning(
    cleaning_id: str,
    payload: CompleteCleaningRequest,
    db: DbClient = Depends(get_db_client),
    notifier: Notifier = Depends(get_notifier),
    user: CurrentUser = Depends(get_current_user),
):
    return cleaning_service.complete_cleaning(
        db, notifier, user, cleaning_id, payload.model_dump(exclude_unset=True)
    )


@router.post("/cleanings/{cleaning_id}/cancel")
def cancel_cleaning(
    cleaning_id: str,
    payload: CancelCleaningRequest,
    db: DbClient = Depends(get_db_client),
    notifier: Notifier = Depends(get_notifier),
    user: CurrentUser = Depends(get_current_user),
):
    return cleaning_service.cancel_cleaning(
        db, notifier, user, cleaning_id, payload.reason, payload.delete_completely
    )


@router.post("/cleanings/{cleaning_id}/move")
def move_cleaning(
    cleaning_id: str,
    payload: MoveCleaningRequest,
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(get_current_user),
):
    record = cleaning_service.move_cleaning(db, user, cleaning_id, payload.model_dump())
    return {"success": True, "cleaning": record.as_dict()}


@router.get("/cleanings/{cleaning_id}/dotation")
def cleaning_dotation(
    cleaning_id: str,
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(get_current_user),
):
    return cleaning_service.cleaning_dotation(db, user, cleaning_id).as_dict()


@router.get("/cleanings/{cleaning_id}/wizard")
def get_wizard(
    cleaning_id: str,
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(get_current_user),
):
    return cleaning_service.get_wizard(db, user, cleaning_id)


@router.post("/cleanings/{cleaning_id}/wizard")
def update_wizard(
    cleaning_id: str,
    payload: WizardUpdateRequest,
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(get_current_user),
):
    return cleaning_service.update_wizard(
        db, user, cleaning_id, payload.model_dump(exclude_none=True)
    )


# ---------------------------------------------------------------------------
# Orders and product requests


@router.get("/orders")
def list_orders(
    property_id: Optional[str] = None,
    status: Optional[str] = None,
    rider_id: Optional[str] = None,
    include_cancelled: bool = False,
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(get_current_user),
):
    records = order_service.list_orders(
        db,
        user=user,
        property_id=property_id,
        status=status,
        rider_id=rider_id,
        include_cancelled=include_cancelled,
    )
    return {"orders": [r.as_dict() for r in records]}


@router.post("/orders/{order_id}/assign")
def assign_rider(
    order_id: str,
    payload: AssignRiderRequest,
    db: DbClient = Depends(get_db_client),
    notifier: Notifier = Depends(get_notifier),
    user: CurrentUser = Depends(get_current_user),
):
    record = order_service.assign_rider(db, notifier, user, order_id, payload.rider_id)
    return {"success": True, "order": record.as_dict()}


@router.delete("/orders/{order_id}/assign")
def unassign_rider(
    order_id: str,
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(get_current_user),
):
    record = order_service.unassign_rider(db, user, order_id)
    return {"success": True, "order": record.as_dict()}


@router.post("/orders/{order_id}/status")
def change_order_status(
    order_id: str,
    payload: OrderStatusRequest,
    db: DbClient = Depends(get_db_client),
    notifier: Notifier = Depends(get_notifier),
    user: CurrentUser = Depends(get_current_user),
):
    record = order_service.change_status(db, notifier, user, order_id, payload.status)
    return {"success": True, "order": record.as_dict()}


@router.patch("/orders/{order_id}/urgency")
def set_order_urgency(
    order_id: str,
    payload: UrgencyRequest,
    db: DbClient = Depends(get_db_client),
    notifier: Notifier = Depends(get_notifier),
    user: CurrentUser = Depends(get_current_user),
):
    return order_service.set_urgency(db, notifier, user, order_id, payload.urgency)


@router.get("/product-requests")
def list_product_requests(
    property_id: Optional[str] = None,
    status: Optional[str] = None,
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(get_current_user),
):
    records = order_service.list_product_requests(
        db, user=user, property_id=property_id, status=status
    )
    return {"requests": [r.as_dict() for r in records]}


@router.post("/product-requests", status_code=201)
def create_product_request(
    payload: ProductRequestCreate,
    db: DbClient = Depends(get_db_client),
    notifier: Notifier = Depends(get_notifier),
    user: CurrentUser = Depends(get_current_user),
):
    return order_service.create_product_request(db, notifier, user, payload.model_dump())


# ---------------------------------------------------------------------------
# Ratings and issues


@router.post("/property-ratings", status_code=201)
def create_rating(
    payload: RatingCreateRequest,
    db: DbClient = Depends(get_db_client),
    notifier: Notifier = Depends(get_notifier),
    user: CurrentUser = Depends(get_current_user),
):
    data = payload.model_dump(exclude_none=True)
    data["issues"] = [issue.model_dump(exclude_none=True) for issue in payload.issues]
    record = rating_service.create_rating(db, notifier, user, data)
    return {"success": True, "rating": record.as_dict()}


@router.get("/property-ratings")
def get_ratings(
    cleaning_id: Optional[str] = None,
    property_id: Optional[str] = None,
    months: Optional[int] = Query(None, ge=1, le=36),
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(get_current_user),
):
    if cleaning_id:
        record = rating_service.get_rating_for_cleaning(db, cleaning_id)
        return {"rating": record.as_dict() if record else None}
    if not property_id:
        raise HTTPException(status_code=400, detail="cleaning_id or property_id is required")
    return rating_service.property_summary(
        db, property_id, months or get_settings().ratings_default_months
    )


@router.get("/issues")
def list_issues(
    property_id: Optional[str] = None,
    only_open: bool = False,
    status: Optional[str] = None,
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(get_current_user),
):
    records = issue_service.list_issues(
        db, user=user, property_id=property_id, only_open=only_open, status=status
    )
    return {"issues": [r.as_dict() for r in records]}


@router.post("/issues", status_code=201)
def create_issue(
    payload: IssueCreateRequest,
    db: DbClient = Depends(get_db_client),
    notifier: Notifier = Depends(get_notifier),
    user: CurrentUser = Depends(get_current_user),
):
    record = issue_service.create_issue(db, notifier, user, payload.model_dump())
    return {"success": True, "id": record.id, "issue": record.as_dict()}


@router.put("/issues/{issue_id}")
def update_issue(
    issue_id: str,
    payload: IssueUpdateRequest,
    db: DbClient = Depends(get_db_client),
    notifier: Notifier = Depends(get_notifier),
    user: CurrentUser = Depends(get_current_user),
):
    record = issue_service.update_issue(
        db, notifier, user, issue_id, payload.model_dump(exclude_unset=True)
    )
    return {"success": True, "issue": record.as_dict()}


@router.delete("/issues/{issue_id}")
def delete_issue(
    issue_id: str,
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(require_admin),
):
    issue_service.delete_issue(db, issue_id)
    return {"success": True}


# ---------------------------------------------------------------------------
# Notifications


@router.get("/notifications")
def list_notifications(
    unread_only: bool = False,
    action_required: Optional[bool] = None,
    count_only: bool = False,
    limit: int = Query(50, ge=1, le=500),
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(get_current_user),
):
    if count_only:
        return {"count": notification_service.count_unread(db, user)}
    records = notification_service.list_for_user(
        db, user, unread_only=unread_only, action_required=action_required, limit=limit
    )
    return {
        "notifications": [r.as_dict() for r in records],
        "unread_count": notification_service.count_unread(db, user),
    }


@router.post("/notifications/mark-all-read")
def mark_all_notifications_read(
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(get_current_user),
):
    return {"success": True, "updated": notification_service.mark_all_read(db, user)}


@router.patch("/notifications/{notification_id}")
def update_notification(
    notification_id: str,
    payload: NotificationActionRequest,
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(get_current_user),
):
    record = notification_service.apply_action(db, notification_id, payload.action, user)
    return {"success": True, "notification": record.as_dict()}


@router.delete("/notifications/{notification_id}")
def delete_notification(
    notification_id: str,
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(get_current_user),
):
    notification_service.delete_notification(db, notification_id, user)
    return {"success": True}


# ---------------------------------------------------------------------------
# Photo upload


@router.post("/upload-photo", response_model=UploadPhotoResponse)
async def upload_photo(
    file: Optional[UploadFile] = File(None),
    cleaning_id: Optional[str] = Form(None),
    index: Optional[int] = Form(None),
    storage: StorageClient = Depends(get_storage_client),
    user: CurrentUser = Depends(get_current_user),
):
    if file is None or not cleaning_id:
        raise HTTPException(status_code=400, detail="file and cleaning_id are required")
    if not (file.content_type or "").startswith("image/"):
        raise HTTPException(status_code=400, detail="Only image files are accepted")

    data = await file.read()
    max_bytes = get_settings().max_upload_bytes
    if len(data) > max_bytes:
        raise UploadTooLargeError(
            f"File exceeds {max_bytes // (1024 * 1024)}MB",
            details={"size": len(data), "max": max_bytes},
        )

    timestamp = int(time.time() * 1000)
    path = f"cleanings/{cleaning_id}/photos/{timestamp}_{index or 0}_{uuid4().hex[:6]}.jpg"
    url = storage.upload_bytes(path, data, content_type="image/jpeg")
    logger.info("Photo uploaded for cleaning %s by %s (%d bytes)", cleaning_id, user.id, len(data))
    return UploadPhotoResponse(success=True, url=url, path=path)


# ---------------------------------------------------------------------------
# Properties, inventory and users


@router.post("/properties", status_code=201)
def create_property(
    payload: PropertyRequest,
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(require_admin),
):
    record = property_service.create_property(db, user, payload.model_dump())
    return {"success": True, "property": record.as_dict()}


@router.get("/properties/{property_id}")
def get_property(
    property_id: str,
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(get_current_user),
):
    return {"property": property_service.get_property(db, user, property_id).as_dict()}


@router.get("/properties/{property_id}/linen-config")
def get_linen_config(
    property_id: str,
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(get_current_user),
):
    return property_service.get_linen_config(db, user, property_id)


@router.put("/properties/{property_id}/linen-config")
def put_linen_config(
    property_id: str,
    payload: LinenConfigRequest,
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(get_current_user),
):
    return property_service.configure_linen(
        db, user, property_id, payload.model_dump(exclude_none=True)
    )


@router.get("/inventory")
def list_inventory(
    category: Optional[str] = None,
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(get_current_user),
):
    return {"items": [r.as_dict() for r in property_service.list_inventory(db, category)]}


@router.post("/inventory", status_code=201)
def create_inventory_item(
    payload: InventoryItemRequest,
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(require_admin),
):
    record = property_service.create_inventory_item(db, payload.model_dump())
    return {"success": True, "item": record.as_dict()}


@router.get("/users")
def list_users(
    role: Optional[str] = None,
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(require_admin),
):
    return {"users": [r.as_dict() for r in property_service.list_users(db, role)]}


@router.post("/users", status_code=201)
def create_user(
    payload: UserCreateRequest,
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(require_admin),
):
    record = property_service.create_user(db, payload.model_dump())
    return {"success": True, "user": record.as_dict()}


@router.post("/users/me/push-tokens")
def register_push_token(
    payload: PushTokenRequest,
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(get_current_user),
):
    record = property_service.register_push_token(db, user, payload.token)
    return {"success": True, "push_tokens": record.data.get("push_tokens") or []}


# ---------------------------------------------------------------------------
# Service types, holidays and pricing


@router.get("/service-types")
def list_service_types(
    active_only: bool = False,
    db: DbClient = Depends(get_db_client),
):
    return {
        "service_types": [asdict(t) for t in catalog.list_service_types(db, active_only)]
    }


@router.post("/service-types", status_code=201)
def create_service_type(
    payload: ServiceTypeRequest,
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(require_admin),
):
    created = catalog.create_service_type(db, ServiceType(**payload.model_dump()), user.id)
    return {"success": True, "service_type": asdict(created)}


@router.post("/service-types/seed")
def seed_service_types(
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(require_admin),
):
    return {"success": True, "created": catalog.seed_service_types(db, user.id)}


@router.put("/service-types/{service_type_id}")
def update_service_type(
    service_type_id: str,
    payload: dict,
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(require_admin),
):
    updated = catalog.update_service_type(db, service_type_id, payload)
    return {"success": True, "service_type": asdict(updated)}


@router.delete("/service-types/{service_type_id}")
def delete_service_type(
    service_type_id: str,
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(require_admin),
):
    catalog.delete_service_type(db, service_type_id)
    return {"success": True}


@router.get("/holidays")
def list_holidays(
    active_only: bool = False,
    year: Optional[int] = None,
    db: DbClient = Depends(get_db_client),
):
    return {"holidays": [asdict(h) for h in catalog.list_holidays(db, active_only, year)]}


@router.post("/holidays", status_code=201)
def create_holiday(
    payload: HolidayRequest,
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(require_admin),
):
    created = catalog.create_holiday(db, Holiday(**payload.model_dump()), user.id)
    return {"success": True, "holiday": asdict(created)}


@router.post("/holidays/seed")
def seed_holidays(
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(require_admin),
):
    return {"success": True, "created": catalog.seed_holidays(db, user.id)}


@router.put("/holidays/{holiday_id}")
def update_holiday(
    holiday_id: str,
    payload: dict,
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(require_admin),
):
    updated = catalog.update_holiday(db, holiday_id, payload)
    return {"success": True, "holiday": asdict(updated)}


@router.delete("/holidays/{holiday_id}")
def delete_holiday(
    holiday_id: str,
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(require_admin),
):
    catalog.delete_holiday(db, holiday_id)
    return {"success": True}


@router.post("/pricing/quote")
def price_quote(
    payload: PriceQuoteRequest,
    db: DbClient = Depends(get_db_client),
    user: CurrentUser = Depends(get_current_user),
):
    service_type = catalog.find_service_type(db, payload.service_type)
    if not service_type:
        raise HTTPException(status_code=404, detail="Service type not found")
    property = {}
    if payload.property_id:
        record = db.get(PROPERTIES, payload.property_id)
        if not record:
            raise HTTPException(status_code=404, detail="Property not found")
        if not (user.is_admin or record.data.get("owner_id") == user.id):
            raise PermissionDeniedError("Not allowed to price this property")
        property = record.data
    base = payload.base_price
    if base is None:
        base = float(property.get("cleaning_price") or 0) + service_type.base_surcharge
    bedrooms = payload.bedrooms or property.get("bedrooms")
    bathrooms = payload.bathrooms or property.get("bathrooms")
    result = calculate_cleaning_price(
        service_type,
        base,
        cleaning_service.scheduled_datetime(payload.scheduled_date, payload.scheduled_time),
        bedrooms=bedrooms,
        bathrooms=bathrooms,
        guests_count=payload.guests_count or property.get("max_guests"),
        holidays=catalog.list_holidays(db, active_only=True),
        is_urgent=payload.is_urgent,
    )
    return {
        "service_type": service_type.code,
        "price": result.as_dict(),
        "estimated_duration": calculate_estimated_duration(service_type, bedrooms, bathrooms),
    }
