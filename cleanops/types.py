"""
Shared enums and small value types.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    OWNER = "PROPRIETARIO"
    OPERATOR = "OPERATORE_PULIZIE"
    RIDER = "RIDER"


class CleaningStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class OrderType(str, Enum):
    LINEN = "LINEN"
    PRODUCTS = "PRODUCTS"
    MIXED = "MIXED"


class OrderUrgency(str, Enum):
    NORMAL = "normal"
    URGENT = "urgent"


class IssueType(str, Enum):
    DAMAGE = "damage"
    MISSING_ITEM = "missing_item"
    MAINTENANCE = "maintenance"
    CLEANLINESS = "cleanliness"
    SAFETY = "safety"
    OTHER = "other"


class IssueSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class NotificationStatus(str, Enum):
    UNREAD = "UNREAD"
    READ = "READ"
    ARCHIVED = "ARCHIVED"


class NotificationType(str, Enum):
    CLEANING_ASSIGNED = "CLEANING_ASSIGNED"
    CLEANING_STARTED = "CLEANING_STARTED"
    CLEANING_COMPLETED = "CLEANING_COMPLETED"
    CLEANING_CANCELLED = "CLEANING_CANCELLED"
    CLEANING_ISSUE = "CLEANING_ISSUE"
    ORDER_CREATED = "ORDER_CREATED"
    ORDER_ASSIGNED = "ORDER_ASSIGNED"
    ORDER_IN_PROGRESS = "ORDER_IN_PROGRESS"
    ORDER_DELIVERED = "ORDER_DELIVERED"
    LAUNDRY_NEW = "LAUNDRY_NEW"
    PRODUCT_REQUEST = "PRODUCT_REQUEST"
    URGENT_ORDER = "urgent_order"
    WARNING = "WARNING"
    INFO = "INFO"
    SUCCESS = "SUCCESS"
    SYSTEM_ALERT = "SYSTEM_ALERT"


# Collection names in the document store.
CLEANINGS = "cleanings"
ORDERS = "orders"
PROPERTIES = "properties"
USERS = "users"
INVENTORY = "inventory"
PRODUCT_REQUESTS = "productRequests"
PROPERTY_RATINGS = "propertyRatings"
CLEANING_ISSUES = "cleaningIssues"
NOTIFICATIONS = "notifications"
SERVICE_TYPES = "serviceTypes"
HOLIDAYS = "holidays"
CLIENT_BALANCES = "clientBalances"
SYNC_EXCLUSIONS = "syncExclusions"
CANCELLED_CLEANINGS = "cancelledCleanings"


@dataclass
class CurrentUser:
    """Identity attached to a request."""

    id: str
    role: UserRole
    name: str = ""
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def display_name(self) -> str:
        return self.name or self.email or self.id
