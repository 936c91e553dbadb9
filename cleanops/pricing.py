"""
Cleaning price calculation.

The base price comes from the property contract plus the service type's
surcharge. On top of it, in order: extra rooms, bathrooms and guests, a
min/max clamp, a holiday surcharge, a weekend surcharge (only when no holiday
applies), an urgency surcharge, VAT, rounding and a minimum charge.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Iterable, Optional

from cleanops.catalog import Holiday, ServiceType


@dataclass
class PricingConfig:
    weekend_enabled: bool = True
    saturday_surcharge: float = 0.0
    sunday_surcharge: float = 20.0
    urgency_enabled: bool = True
    # (hours before the cleaning, percentage), checked in order.
    urgency_tiers: tuple[tuple[float, float], ...] = (
        (3, 75.0),
        (6, 50.0),
        (12, 35.0),
        (24, 20.0),
    )
    vat_rate: float = 0.0
    vat_included: bool = True
    round_to_nearest: float = 0.5
    minimum_charge: float = 0.0


@dataclass
class BreakdownItem:
    label: str
    amount: float
    type: str
    percentage: Optional[float] = None


@dataclass
class PriceResult:
    base_price: float
    holiday_surcharge: float
    holiday_name: Optional[str]
    weekend_surcharge: float
    urgency_surcharge: float
    subtotal: float
    vat: float
    total: float
    breakdown: list[BreakdownItem] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


def find_applicable_holiday(
    day: date, holidays: Iterable[Holiday], service_type_id: Optional[str] = None
) -> Optional[Holiday]:
    for holiday in holidays:
        if not holiday.is_active:
            continue
        if not holiday.applies_to(service_type_id):
            continue
        if holiday.falls_on(day):
            return holiday
    return None


def is_holiday_date(day: date, holidays: Iterable[Holiday]) -> bool:
    return find_applicable_holiday(day, holidays) is not None


def holiday_name(day: date, holidays: Iterable[Holiday]) -> Optional[str]:
    holiday = find_applicable_holiday(day, holidays)
    return holiday.name if holiday else None


def is_weekend_date(day: date) -> bool:
    return day.weekday() >= 5


def _round_to(value: float, step: float) -> float:
    if step <= 0:
        return value
    return round(math.floor(value / step + 0.5) * step, 2)


def calculate_cleaning_price(
    service_type: ServiceType,
    base_price: float,
    when: datetime,
    *,
    bedrooms: Optional[int] = None,
    bathrooms: Optional[int] = None,
    guests_count: Optional[int] = None,
    holidays: Iterable[Holiday] = (),
    config: Optional[PricingConfig] = None,
    created_at: Optional[datetime] = None,
    is_urgent: bool = False,
) -> PriceResult:
    config = config or PricingConfig()
    breakdown = [BreakdownItem(f"{service_type.name} - Base", base_price, "base")]
    price = base_price

    if bedrooms and bedrooms > 1 and service_type.price_per_room:
        extra = (bedrooms - 1) * service_type.price_per_room
        price += extra
        breakdown.append(BreakdownItem(f"Extra rooms ({bedrooms - 1})", extra, "surcharge"))

    if bathrooms and bathrooms > 1 and service_type.price_per_bathroom:
        extra = (bathrooms - 1) * service_type.price_per_bathroom
        price += extra
        breakdown.append(BreakdownItem(f"Extra bathrooms ({bathrooms - 1})", extra, "surcharge"))

    if guests_count and guests_count > 2 and service_type.price_per_guest:
        extra = (guests_count - 2) * service_type.price_per_guest
        price += extra
        breakdown.append(BreakdownItem(f"Extra guests ({guests_count - 2})", extra, "surcharge"))

    if service_type.min_price and price < service_type.min_price:
        price = service_type.min_price
    if service_type.max_price and price > service_type.max_price:
        price = service_type.max_price

    holiday_surcharge = 0.0
    holiday = find_applicable_holiday(when.date(), holidays, service_type.id)
    if holiday:
        if holiday.surcharge_type == "percentage" and holiday.surcharge_percentage:
            holiday_surcharge = price * holiday.surcharge_percentage / 100
            breakdown.append(
                BreakdownItem(
                    f"Holiday: {holiday.name}",
                    holiday_surcharge,
                    "surcharge",
                    holiday.surcharge_percentage,
                )
            )
        elif holiday.surcharge_type == "fixed" and holiday.surcharge_fixed:
            holiday_surcharge = holiday.surcharge_fixed
            breakdown.append(
                BreakdownItem(f"Holiday: {holiday.name}", holiday_surcharge, "surcharge")
            )

    weekend_surcharge = 0.0
    if config.weekend_enabled and not holiday:
        weekday = when.weekday()
        if weekday == 5 and config.saturday_surcharge > 0:
            weekend_surcharge = price * config.saturday_surcharge / 100
            breakdown.append(
                BreakdownItem("Saturday", weekend_surcharge, "surcharge", config.saturday_surcharge)
            )
        elif weekday == 6 and config.sunday_surcharge > 0:
            weekend_surcharge = price * config.sunday_surcharge / 100
            breakdown.append(
                BreakdownItem("Sunday", weekend_surcharge, "surcharge", config.sunday_surcharge)
            )

    urgency_surcharge = 0.0
    if config.urgency_enabled and (is_urgent or created_at):
        hours = (when - created_at).total_seconds() / 3600 if created_at else 0.0
        tier = config.urgency_tiers[0] if is_urgent else next(
            (t for t in config.urgency_tiers if hours < t[0]), None
        )
        if tier and tier[1] > 0:
            limit, percentage = tier
            urgency_surcharge = price * percentage / 100
            breakdown.append(
                BreakdownItem(
                    f"Urgency (< {limit:g} hours)",
                    urgency_surcharge,
                    "surcharge",
                    percentage,
                )
            )

    subtotal = price + holiday_surcharge + weekend_surcharge + urgency_surcharge

    vat = 0.0
    if config.vat_rate > 0 and not config.vat_included:
        vat = subtotal * config.vat_rate / 100
        breakdown.append(BreakdownItem(f"VAT {config.vat_rate:g}%", vat, "tax", config.vat_rate))

    total = _round_to(subtotal + vat, config.round_to_nearest)

    if config.minimum_charge > 0 and total < config.minimum_charge:
        breakdown.append(
            BreakdownItem("Minimum charge", config.minimum_charge - (subtotal + vat), "surcharge")
        )
        total = config.minimum_charge

    return PriceResult(
        base_price=price,
        holiday_surcharge=round(holiday_surcharge, 2),
        holiday_name=holiday.name if holiday else None,
        weekend_surcharge=round(weekend_surcharge, 2),
        urgency_surcharge=round(urgency_surcharge, 2),
        subtotal=round(subtotal, 2),
        vat=round(vat, 2),
        total=total,
        breakdown=breakdown,
    )


def calculate_estimated_duration(
    service_type: ServiceType,
    bedrooms: Optional[int] = None,
    bathrooms: Optional[int] = None,
) -> int:
    duration = service_type.estimated_duration
    if bedrooms and bedrooms > 1 and service_type.duration_per_room:
        duration += (bedrooms - 1) * service_type.duration_per_room
    if bathrooms and bathrooms > 1 and service_type.duration_per_bathroom:
        duration += (bathrooms - 1) * service_type.duration_per_bathroom
    return duration
