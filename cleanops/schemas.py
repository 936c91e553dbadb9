"""
Pydantic schemas for the FastAPI routes.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field


class CleaningCreateRequest(BaseModel):
    property_id: str
    scheduled_date: str
    scheduled_time: Optional[str] = None
    service_type: Optional[str] = None
    sgrosso_reason: Optional[str] = None
    sgrosso_notes: Optional[str] = None
    price: Optional[float] = None
    guests_count: Optional[int] = None
    notes: Optional[str] = None
    is_urgent: bool = False


class AssignOperatorRequest(BaseModel):
    operator_id: Optional[str] = None


class ExtraCharge(BaseModel):
    description: str = ""
    amount: float = 0.0


class IssueCreateRequest(BaseModel):
    property_id: Optional[str] = None
    property_name: Optional[str] = None
    cleaning_id: Optional[str] = None
    type: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    severity: Optional[str] = None
    photos: list[str] = Field(default_factory=list)


class CompleteCleaningRequest(BaseModel):
    photos: Optional[list[str]] = None
    photos_count: Optional[int] = None
    checklist: Optional[list] = None
    notes: Optional[str] = None
    rating: Optional[dict[str, int]] = None
    rating_notes: Optional[str] = None
    issues: list[IssueCreateRequest] = Field(default_factory=list)
    extra_charges: list[ExtraCharge] = Field(default_factory=list)


class CancelCleaningRequest(BaseModel):
    reason: Optional[str] = None
    delete_completely: bool = False


class MoveCleaningRequest(BaseModel):
    new_date: Optional[str] = None
    new_time: Optional[str] = None
    reason: Optional[str] = None


class WizardUpdateRequest(BaseModel):
    action: Literal["save", "advance", "back"] = "save"
    checklist: Optional[list[dict]] = None
    completed_items: Optional[list[str]] = None
    photos: Optional[list[str]] = None
    rating: Optional[dict[str, int]] = None
    issues: Optional[list[dict]] = None
    products: Optional[list[dict]] = None
    notes: Optional[str] = None


class StartCleaningResponse(BaseModel):
    success: bool
    started_at: float
    laundry_order_id: Optional[str] = None
    order_ids: list[str] = Field(default_factory=list)
    message: str


class AssignRiderRequest(BaseModel):
    rider_id: Optional[str] = None


class OrderStatusRequest(BaseModel):
    status: str


class UrgencyRequest(BaseModel):
    urgency: Optional[str] = None


class ProductRequestItem(BaseModel):
    item_id: Optional[str] = None
    id: Optional[str] = None
    name: Optional[str] = None
    quantity: Optional[int] = None


class ProductRequestCreate(BaseModel):
    property_id: Optional[str] = None
    property_name: Optional[str] = None
    cleaning_id: Optional[str] = None
    items: list[ProductRequestItem] = Field(default_factory=list)
    notes: Optional[str] = None


class RatingCreateRequest(BaseModel):
    cleaning_id: Optional[str] = None
    property_id: Optional[str] = None
    guest_cleanliness: Optional[int] = None
    checkout_punctuality: Optional[int] = None
    property_condition: Optional[int] = None
    damages: Optional[int] = None
    access_ease: Optional[int] = None
    supplies_complete: Optional[bool] = None
    notes: Optional[str] = None
    issues: list[IssueCreateRequest] = Field(default_factory=list)


class IssueUpdateRequest(BaseModel):
    action: Optional[Literal["resolve", "reopen"]] = None
    resolved_in_cleaning_id: Optional[str] = None
    resolution_notes: Optional[str] = None
    resolution_photos: Optional[list[str]] = None
    title: Optional[str] = None
    description: Optional[str] = None
    severity: Optional[str] = None
    type: Optional[str] = None
    photos: Optional[list[str]] = None
    status: Optional[str] = None


class NotificationActionRequest(BaseModel):
    action: str


class UploadPhotoResponse(BaseModel):
    success: bool
    url: str
    path: str


class PropertyRequest(BaseModel):
    name: str
    owner_id: Optional[str] = None
    owner_email: Optional[str] = None
    address: Optional[str] = None
    bedrooms: int = 1
    bathrooms: int = 1
    max_guests: int = 2
    beds: list[dict] = Field(default_factory=list)
    cleaning_price: float = 0.0
    service_configs: dict = Field(default_factory=dict)
    linen_config: list[dict] = Field(default_factory=list)
    auto_generate_laundry: bool = False
    uses_own_linen: bool = False


class LinenConfigRequest(BaseModel):
    beds: Optional[list[dict]] = None
    service_configs: Optional[dict] = None
    regenerate: bool = False


class InventoryItemRequest(BaseModel):
    name: str
    key: Optional[str] = None
    category: str
    sell_price: Optional[float] = None
    price: Optional[float] = None
    quantity: int = 0


class UserCreateRequest(BaseModel):
    id: Optional[str] = None
    name: str
    email: Optional[str] = None
    role: str
    push_tokens: list[str] = Field(default_factory=list)


class PushTokenRequest(BaseModel):
    token: str


class ServiceTypeRequest(BaseModel):
    code: str = Field(..., max_length=32)
    name: str
    description: str = ""
    base_surcharge: float = 0.0
    requires_manual_price: bool = False
    estimated_duration: int = 90
    extra_duration: int = 0
    duration_per_room: int = 0
    duration_per_bathroom: int = 0
    price_per_room: float = 0.0
    price_per_bathroom: float = 0.0
    price_per_guest: float = 0.0
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    min_photos_required: int = 10
    requires_rating: bool = True
    admin_only: bool = False
    client_can_request: bool = True
    requires_approval: bool = False
    requires_reason: bool = False
    auto_assign_every_n: Optional[int] = None
    is_active: bool = True
    sort_order: int = 0
    available_for_manual: bool = True
    available_for_auto: bool = True


class HolidayRequest(BaseModel):
    name: str = ""
    type: str = "custom"
    date: Optional[str] = None
    is_recurring: bool = False
    recurring_month: Optional[int] = None
    recurring_day: Optional[int] = None
    surcharge_type: str = "percentage"
    surcharge_percentage: Optional[float] = None
    surcharge_fixed: Optional[float] = None
    applies_to_all_services: bool = True
    applicable_service_types: list[str] = Field(default_factory=list)
    is_active: bool = True
    notes: Optional[str] = None


class PriceQuoteRequest(BaseModel):
    service_type: Optional[str] = None
    property_id: Optional[str] = None
    base_price: Optional[float] = None
    scheduled_date: str
    scheduled_time: Optional[str] = None
    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None
    guests_count: Optional[int] = None
    is_urgent: bool = False
