"""
Linen dotation: which sheets, towels and courtesy items a stay needs.

Bed linen is derived from the bed configuration and bath linen from the guest
and bathroom counts. Requirements are mapped onto inventory items through a
keyword table so properties can use their own inventory naming.

Per-guest configurations are stored on the property as::

    {"beds": [bed_id, ...],
     "bed_linen": {bed_id: {item_id: qty}},
     "bath": {item_id: qty},
     "kit": {item_id: qty},
     "extras": {item_id: bool}}

Older documents use the short keys (bl/ba/ki/ex), the selectedBeds/bedLinen
form, or a single ``"all"`` bucket for bed linen; `normalize_config` and
`migrate_old_config` bring them into the shape above.
"""

from __future__ import annotations

import math
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Iterable, Optional

# Inventory categories.
BED_LINEN = "biancheria_letto"
BATH_LINEN = "biancheria_bagno"
COURTESY_KIT = "kit_cortesia"
EXTRA_SERVICES = "servizi_extra"


@dataclass(frozen=True)
class BedType:
    type: str
    name: str
    capacity: int
    linen_kind: str


BED_TYPES: dict[str, BedType] = {
    "matrimoniale": BedType("matrimoniale", "Matrimoniale", 2, "matr"),
    "singolo": BedType("singolo", "Singolo", 1, "sing"),
    "piazza_mezza": BedType("piazza_mezza", "Piazza e Mezza", 1, "sing"),
    "divano_letto": BedType("divano_letto", "Divano Letto", 2, "divano"),
    "castello": BedType("castello", "Letto a Castello", 2, "castello"),
}


@dataclass
class LinenRequirement:
    double_sheets: int = 0
    single_sheets: int = 0
    pillowcases: int = 0

    def __add__(self, other: "LinenRequirement") -> "LinenRequirement":
        return LinenRequirement(
            self.double_sheets + other.double_sheets,
            self.single_sheets + other.single_sheets,
            self.pillowcases + other.pillowcases,
        )


@dataclass
class BathRequirement:
    shower_towels: int = 0
    face_towels: int = 0
    bidet_towels: int = 0
    bath_mats: int = 0


_DOUBLE = LinenRequirement(double_sheets=3, pillowcases=2)
_SINGLE = LinenRequirement(single_sheets=3, pillowcases=1)
_BUNK = LinenRequirement(single_sheets=6, pillowcases=2)

BED_LINEN_RULES: dict[str, LinenRequirement] = {
    "matrimoniale": _DOUBLE,
    "singolo": _SINGLE,
    "piazza_mezza": _SINGLE,
    "divano_letto": _DOUBLE,
    "castello": _BUNK,
    "matr": _DOUBLE,
    "sing": _SINGLE,
    "divano": _DOUBLE,
}

ITEM_KEYWORDS: dict[str, tuple[str, ...]] = {
    "double_sheets": (
        "matrimoniale", "matrimoniali", "matr", "lenz_matr", "lenzuolo_matr",
        "doppio", "double", "doublesheets", "doublesheet", "queen", "king",
        "matrimon",
    ),
    "single_sheets": (
        "singolo", "singola", "singole", "singoli", "sing", "lenz_sing",
        "lenzuolo_sing", "single", "singlesheets", "singlesheet", "twin",
        "1 piazza", "una piazza",
    ),
    "pillowcases": (
        "federa", "federe", "fed", "pillowcase", "pillowcases", "pillow",
        "cuscino", "guanciale", "cuscinetto",
    ),
    "duvet_covers": (
        "copripiumino", "copripiumini", "piumino", "piumone", "duvet",
        "duvet cover", "comforter",
    ),
    "shower_towels": (
        "telo doccia", "telo_doccia", "telodoccia", "telo corpo", "telo_corpo",
        "telocorpo", "asciugamano grande", "asciugamano_grande", "grande",
        "bath towel", "shower towel", "body towel", "telo bagno",
        "towel large", "towelslarge",
    ),
    "face_towels": (
        "viso", "asciugamano viso", "asciugamano_viso", "asciugamanoviso",
        "face towel", "face", "towelsface", "towelface", "asciugamano medio",
        "medio",
    ),
    "bidet_towels": (
        "bidet", "telo bidet", "telo_bidet", "telobidet", "ospite",
        "asciugamano ospite", "asciugamano_ospite", "piccolo",
        "asciugamano piccolo", "asciugamano_piccolo", "guest towel",
        "hand towel", "small towel", "towelssmall", "towelsmall",
    ),
    "bath_mats": (
        "tappetino", "tappetini", "tappeto", "scendi", "scendibagno",
        "scendi_bagno", "scendidoccia", "scendi_doccia", "bath mat", "bathmat",
        "bathmats", "mat", "pedana", "pediluvio",
    ),
    "bathrobes": ("accappatoio", "accappatoi", "accapp", "bathrobe", "robe"),
    "shampoo": ("shampoo", "shampo", "sciampo"),
    "shower_gel": (
        "bagnoschiuma", "bagno schiuma", "docciaschiuma", "doccia schiuma",
        "shower gel", "body wash", "gel doccia",
    ),
    "soap": ("sapone", "saponetta", "saponette", "saponcino", "soap", "hand soap"),
    "body_cream": ("crema", "crema corpo", "lozione", "body lotion", "moisturizer"),
}

# Identifiers found in older saved configs, mapped to keyword kinds.
LEGACY_ITEM_IDS: dict[str, str] = {
    "pillowcases": "pillowcases",
    "pillowcase": "pillowcases",
    "doubleSheets": "double_sheets",
    "doubleSheet": "double_sheets",
    "singleSheets": "single_sheets",
    "singleSheet": "single_sheets",
    "lenzuola_matrimoniale": "double_sheets",
    "lenzuola_singolo": "single_sheets",
    "federa": "pillowcases",
    "copripiumino": "duvet_covers",
    "towelsLarge": "shower_towels",
    "towelLarge": "shower_towels",
    "towelsSmall": "bidet_towels",
    "towelSmall": "bidet_towels",
    "towelsFace": "face_towels",
    "towelFace": "face_towels",
    "bathMats": "bath_mats",
    "bathMat": "bath_mats",
    "asciugamano_grande": "shower_towels",
    "asciugamano_piccolo": "bidet_towels",
    "asciugamano_viso": "face_towels",
    "tappetino_bagno": "bath_mats",
    "telo_doccia": "shower_towels",
}

DEFAULT_PRICES: dict[str, float] = {
    "double_sheets": 6.0,
    "single_sheets": 5.0,
    "pillowcases": 2.0,
    "shower_towels": 4.0,
    "face_towels": 2.0,
    "bidet_towels": 1.5,
    "bath_mats": 2.0,
    "shampoo": 1.0,
    "shower_gel": 1.0,
    "soap": 0.5,
}

DEFAULT_NAMES: dict[str, str] = {
    "double_sheets": "Lenzuola Matrimoniali",
    "single_sheets": "Lenzuola Singole",
    "pillowcases": "Federe",
    "shower_towels": "Teli Doccia",
    "face_towels": "Asciugamani Viso",
    "bidet_towels": "Asciugamani Bidet",
    "bath_mats": "Tappetini",
}

_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")


# ---------------------------------------------------------------------------
# Beds


def bed_type_info(kind: Optional[str]) -> BedType:
    """Resolve a bed type by internal name or linen kind; unknown means singolo."""
    value = (kind or "").lower()
    for info in BED_TYPES.values():
        if value in (info.type, info.linen_kind):
            return info
    return BED_TYPES["singolo"]


def bed_capacity(bed: dict) -> int:
    capacity = bed.get("capacity")
    if capacity:
        return int(capacity)
    return bed_type_info(bed.get("type")).capacity


def linen_for_bed_type(kind: Optional[str]) -> LinenRequirement:
    value = (kind or "").lower()
    rule = BED_LINEN_RULES.get(value)
    if rule:
        return LinenRequirement(**asdict(rule))
    if any(token in value for token in ("matr", "matrimon", "divano", "double")):
        return LinenRequirement(**asdict(_DOUBLE))
    if "castello" in value or "bunk" in value:
        return LinenRequirement(**asdict(_BUNK))
    return LinenRequirement(**asdict(_SINGLE))


def linen_for_beds(beds: Iterable[dict]) -> LinenRequirement:
    total = LinenRequirement()
    for bed in beds:
        total = total + linen_for_bed_type(bed.get("type") or "singolo")
    return total


def bath_linen(guests: int, bathrooms: int) -> BathRequirement:
    """One shower, face and bidet towel per guest; one mat per bathroom."""
    return BathRequirement(
        shower_towels=guests,
        face_towels=guests,
        bidet_towels=guests,
        bath_mats=bathrooms,
    )


def _make_bed(bed_id: int, kind: str, location: str) -> dict:
    info = BED_TYPES[kind]
    return {
        "id": f"b{bed_id}",
        "type": info.type,
        "name": info.name,
        "location": location,
        "capacity": info.capacity,
    }


def generate_auto_beds(max_guests: int, bedrooms: int) -> list[dict]:
    """Propose a bed layout that sleeps `max_guests` across `bedrooms` rooms."""
    beds: list[dict] = []
    remaining = max_guests
    next_id = 1

    for room in range(bedrooms):
        if remaining <= 0:
            break
        beds.append(_make_bed(next_id, "matrimoniale", f"Camera {room + 1}"))
        next_id += 1
        remaining -= 2

    if remaining >= 2:
        beds.append(_make_bed(next_id, "divano_letto", "Soggiorno"))
        next_id += 1
        remaining -= 2

    if remaining == 1:
        beds.append(
            _make_bed(next_id, "singolo", "Cameretta" if bedrooms > 1 else "Camera")
        )
        next_id += 1
        remaining -= 1

    while remaining >= 2:
        beds.append(_make_bed(next_id, "castello", "Cameretta"))
        next_id += 1
        remaining -= 2

    if remaining == 1:
        beds.append(_make_bed(next_id, "singolo", "Cameretta"))

    return beds


# ---------------------------------------------------------------------------
# Inventory matching


def _item_text(item: dict) -> list[str]:
    return [
        str(item.get(key) or "").lower()
        for key in ("name", "id", "key")
        if item.get(key)
    ]


def _keyword_matches(keyword: str, text: str) -> bool:
    # Short keywords ("mat", "fed", "sing") would hit unrelated names as substrings.
    if len(keyword) <= 4:
        return keyword in _TOKEN_SPLIT.split(text)
    return keyword in text


def find_item_by_keywords(items: Iterable[dict], kind: str) -> Optional[dict]:
    keywords = ITEM_KEYWORDS.get(kind)
    if not keywords:
        return None
    items = list(items or [])
    for item in items:
        if item.get("key") == kind:
            return item
    for item in items:
        texts = _item_text(item)
        if any(_keyword_matches(kw, text) for kw in keywords for text in texts):
            return item
    return None


def item_price(item: Optional[dict]) -> float:
    if not item:
        return 0.0
    return float(item.get("sell_price") or item.get("price") or 0)


def _items_in(inventory: Iterable[dict], category: str) -> list[dict]:
    inventory = list(inventory or [])
    scoped = [i for i in inventory if i.get("category") == category]
    return scoped or [i for i in inventory if not i.get("category")]


def map_bed_linen(req: LinenRequirement, inventory: Iterable[dict]) -> dict[str, int]:
    inventory = list(inventory)
    result: dict[str, int] = {}
    for kind, qty in asdict(req).items():
        if qty <= 0:
            continue
        item = find_item_by_keywords(inventory, kind)
        if item:
            result[item["id"]] = qty
    return result


def map_bath_linen(req: BathRequirement, inventory: Iterable[dict]) -> dict[str, int]:
    inventory = list(inventory)
    result: dict[str, int] = {}
    for kind, qty in asdict(req).items():
        if qty <= 0:
            continue
        item = find_item_by_keywords(inventory, kind)
        if item:
            result[item["id"]] = qty
    return result


# ---------------------------------------------------------------------------
# Per-guest configurations


def generate_config_for_guests(
    guests: int,
    beds: list[dict],
    bathrooms: int,
    inventory: Iterable[dict],
) -> dict:
    inventory = list(inventory or [])
    selected: list[str] = []
    remaining = guests
    for bed in beds:
        if remaining <= 0:
            break
        selected.append(bed["id"])
        remaining -= bed_capacity(bed)

    bed_items = _items_in(inventory, BED_LINEN)
    beds_by_id = {bed["id"]: bed for bed in beds}
    bed_linen = {
        bed_id: map_bed_linen(
            linen_for_bed_type(beds_by_id[bed_id].get("type") or "singolo"), bed_items
        )
        for bed_id in selected
    }

    bath = map_bath_linen(bath_linen(guests, bathrooms), _items_in(inventory, BATH_LINEN))

    kit: dict[str, int] = {}
    for item in (i for i in inventory if i.get("category") == COURTESY_KIT):
        name = str(item.get("name") or "").lower()
        per_guest = any(word in name for word in ("shampoo", "bagno", "sapone"))
        kit[item["id"]] = guests if per_guest else 0

    extras = {
        item["id"]: False
        for item in inventory
        if item.get("category") == EXTRA_SERVICES
    }

    return {
        "beds": selected,
        "bed_linen": bed_linen,
        "bath": bath,
        "kit": kit,
        "extras": extras,
    }


def generate_all_guest_configs(
    max_guests: int, beds: list[dict], bathrooms: int, inventory: Iterable[dict]
) -> dict[str, dict]:
    inventory = list(inventory or [])
    return {
        str(guests): generate_config_for_guests(guests, beds, bathrooms, inventory)
        for guests in range(1, max_guests + 1)
    }


def normalize_config(config: Optional[dict]) -> Optional[dict]:
    """Convert any stored config layout into the current key names."""
    if config is None:
        return None
    if "selectedBeds" in config or "bedLinen" in config:
        return {
            "beds": list(config.get("selectedBeds") or []),
            "bed_linen": dict(config.get("bedLinen") or {}),
            "bath": dict(config.get("bathItems") or {}),
            "kit": dict(config.get("kitItems") or {}),
            "extras": dict(config.get("extras") or {}),
        }
    if any(key in config for key in ("bl", "ba", "ki", "ex")):
        return {
            "beds": list(config.get("beds") or []),
            "bed_linen": dict(config.get("bl") or {}),
            "bath": dict(config.get("ba") or {}),
            "kit": dict(config.get("ki") or {}),
            "extras": dict(config.get("ex") or {}),
        }
    return {
        "beds": list(config.get("beds") or []),
        "bed_linen": dict(config.get("bed_linen") or {}),
        "bath": dict(config.get("bath") or {}),
        "kit": dict(config.get("kit") or {}),
        "extras": dict(config.get("extras") or {}),
    }


def migrate_old_config(
    config: dict, beds: list[dict], inventory: Iterable[dict]
) -> dict:
    """Replace a shared ``"all"`` bed-linen bucket with per-bed entries."""
    config = normalize_config(config)
    if config["bed_linen"] and "all" not in config["bed_linen"]:
        return config
    inventory = list(inventory or [])
    beds_by_id = {bed["id"]: bed for bed in beds}
    bed_linen: dict[str, dict[str, int]] = {}
    for bed_id in config["beds"]:
        bed = beds_by_id.get(bed_id)
        if bed:
            bed_linen[bed_id] = map_bed_linen(
                linen_for_bed_type(bed.get("type") or "singolo"), inventory
            )
    config["bed_linen"] = bed_linen
    return config


@dataclass
class ConfigValidation:
    valid: bool
    capacity: int
    needed: int
    missing: int
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


def validate_guest_config(config: dict, beds: list[dict], guests: int) -> ConfigValidation:
    config = normalize_config(config)
    selected = [bed for bed in beds if bed["id"] in config["beds"]]
    capacity = sum(bed_capacity(bed) for bed in selected)
    result = ConfigValidation(
        valid=capacity >= guests,
        capacity=capacity,
        needed=guests,
        missing=max(0, guests - capacity),
    )
    if not result.valid:
        result.errors.append(f"Not enough beds: {capacity} places for {guests} guests")
    for bed_id in config["beds"]:
        if not config["bed_linen"].get(bed_id):
            result.warnings.append(f"Bed {bed_id} has no linen configured")
    if not config["bath"]:
        result.warnings.append("No bath linen configured")
    return result


def validate_all_configs(
    configs: dict, beds: list[dict], max_guests: int
) -> tuple[bool, dict[str, ConfigValidation]]:
    results: dict[str, ConfigValidation] = {}
    all_valid = True
    for guests in range(1, max_guests + 1):
        config = configs.get(str(guests)) or configs.get(guests)
        if config:
            results[str(guests)] = validate_guest_config(config, beds, guests)
        else:
            results[str(guests)] = ConfigValidation(
                valid=False,
                capacity=0,
                needed=guests,
                missing=guests,
                errors=[f"Missing configuration for {guests} guests"],
            )
        all_valid = all_valid and results[str(guests)].valid
    return all_valid, results


# ---------------------------------------------------------------------------
# Pricing and flattening


def _resolve_saved_item(inventory: list[dict], item_id: str) -> tuple[Optional[dict], Optional[str]]:
    lowered = item_id.lower()
    for item in inventory:
        if (
            item.get("id") == item_id
            or item.get("key") == item_id
            or lowered in str(item.get("name") or "").lower()
        ):
            return item, None
    kind = LEGACY_ITEM_IDS.get(item_id)
    if kind:
        return find_item_by_keywords(inventory, kind), kind
    return None, None


def config_to_selected_items(config: Optional[dict], inventory: Iterable[dict]) -> list[dict]:
    """Flatten a config into order lines, aggregating bed linen by item."""
    inventory = list(inventory or [])
    config = normalize_config(config)
    if not config or not inventory:
        return []

    lines: dict[str, dict] = {}

    def add(item_id: str, qty: int, category: str) -> None:
        item, _ = _resolve_saved_item(inventory, item_id)
        if not item or qty <= 0:
            return
        key = item.get("id") or item_id
        if key in lines:
            lines[key]["quantity"] += qty
            return
        lines[key] = {
            "id": key,
            "name": item.get("name") or item_id,
            "quantity": qty,
            "price": item_price(item),
            "category": item.get("category") or category,
        }

    for per_bed in config["bed_linen"].values():
        for item_id, qty in (per_bed or {}).items():
            add(item_id, qty, BED_LINEN)
    for item_id, qty in config["bath"].items():
        add(item_id, qty, BATH_LINEN)
    for item_id, qty in config["kit"].items():
        add(item_id, qty, COURTESY_KIT)
    for item_id, active in config["extras"].items():
        if active:
            add(item_id, 1, EXTRA_SERVICES)
    return list(lines.values())


def config_price(config: dict, inventory: Iterable[dict]) -> float:
    return round(
        sum(line["price"] * line["quantity"] for line in config_to_selected_items(config, inventory)),
        2,
    )


@dataclass
class DotationLine:
    name: str
    quantity: int
    price: float


@dataclass
class DotationResult:
    cleaning_price: float
    dotation_price: float
    total_price: float
    bed_items: list[DotationLine]
    bath_items: list[DotationLine]
    source: str

    def as_dict(self) -> dict:
        return asdict(self)


def _append_aggregated(lines: list[DotationLine], name: str, qty: int, price: float) -> None:
    for line in lines:
        if line.name == name:
            line.quantity += qty
            return
    lines.append(DotationLine(name=name, quantity=qty, price=price))


def _saved_line(inventory: list[dict], item_id: str) -> tuple[str, float]:
    item, kind = _resolve_saved_item(inventory, item_id)
    if item:
        return item.get("name") or item_id, item_price(item)
    return DEFAULT_NAMES.get(kind or "", item_id), DEFAULT_PRICES.get(kind or "", 0.0)


def calculate_dotation(
    cleaning: dict, property: Optional[dict], inventory: Iterable[dict]
) -> DotationResult:
    """Price the linen a cleaning needs, from a saved config or auto-generated beds."""
    inventory = list(inventory or [])
    property = property or {}
    guests = int(cleaning.get("guests_count") or 2)
    bedrooms = int(property.get("bedrooms") or 1)
    bathrooms = int(property.get("bathrooms") or 1)
    cleaning_price = float(
        cleaning.get("price")
        or cleaning.get("contract_price")
        or property.get("cleaning_price")
        or 0
    )

    saved: Any = cleaning.get("custom_linen_config") or (
        property.get("service_configs") or {}
    ).get(str(guests))
    bed_items: list[DotationLine] = []
    bath_items: list[DotationLine] = []
    total = 0.0

    if saved:
        config = normalize_config(saved)
        for per_bed in config["bed_linen"].values():
            for item_id, qty in (per_bed or {}).items():
                if qty <= 0:
                    continue
                name, price = _saved_line(inventory, item_id)
                _append_aggregated(bed_items, name, qty, price)
                total += price * qty
        for item_id, qty in config["bath"].items():
            if qty <= 0:
                continue
            name, price = _saved_line(inventory, item_id)
            bath_items.append(DotationLine(name=name, quantity=qty, price=price))
            total += price * qty
        source = "saved"
    else:
        beds = generate_auto_beds(guests, bedrooms)[: math.ceil(guests / 2)]
        for kind, qty in asdict(linen_for_beds(beds)).items():
            if qty <= 0:
                continue
            item = find_item_by_keywords(inventory, kind)
            if not item:
                continue
            price = item_price(item)
            bed_items.append(
                DotationLine(name=item.get("name") or DEFAULT_NAMES[kind], quantity=qty, price=price)
            )
            total += price * qty
        for kind, qty in asdict(bath_linen(guests, bathrooms)).items():
            if qty <= 0:
                continue
            item = find_item_by_keywords(inventory, kind)
            if not item:
                continue
            name = item.get("name") or DEFAULT_NAMES[kind]
            if any(line.name == name for line in bath_items):
                continue
            price = item_price(item)
            bath_items.append(DotationLine(name=name, quantity=qty, price=price))
            total += price * qty
        source = "auto"

    total = round(total, 2)
    return DotationResult(
        cleaning_price=cleaning_price,
        dotation_price=total,
        total_price=round(cleaning_price + total, 2),
        bed_items=bed_items,
        bath_items=bath_items,
        source=source,
    )
