"""
Operator cleaning wizard.

The wizard walks an operator through briefing, checklist, products, rating,
issues and photos before the cleaning can be completed. Progress is stored on
the cleaning document under ``wizard`` so it survives reloads; the step is
re-synchronised with the cleaning status whenever the document changes.
"""

from __future__ import annotations

import copy
import math
from dataclasses import asdict, dataclass, field
from typing import Optional

from cleanops.errors import ErrorCode, ValidationError
from cleanops.ratings import RATING_CATEGORIES, is_rating_complete
from cleanops.types import CleaningStatus

STEPS = ("briefing", "checklist", "products", "rating", "issues", "photos", "complete")

MIN_WIZARD_PHOTOS = 2
CHECKLIST_COMPLETION_RATIO = 0.8

DEFAULT_CHECKLIST = [
    {"id": "1", "text": "Cambiare lenzuola e federe", "category": "camera"},
    {"id": "2", "text": "Rifare i letti", "category": "camera"},
    {"id": "3", "text": "Cambiare asciugamani", "category": "bagno"},
    {"id": "4", "text": "Pulire e disinfettare bagno", "category": "bagno"},
    {"id": "5", "text": "Pulire specchi", "category": "bagno"},
    {"id": "6", "text": "Aspirare pavimenti", "category": "generale"},
    {"id": "7", "text": "Lavare pavimenti", "category": "generale"},
    {"id": "8", "text": "Pulire cucina", "category": "cucina"},
    {"id": "9", "text": "Pulire elettrodomestici", "category": "cucina"},
    {"id": "10", "text": "Svuotare frigorifero", "category": "cucina"},
    {"id": "11", "text": "Svuotare cestini", "category": "generale"},
    {"id": "12", "text": "Controllare scorte", "category": "generale"},
]


def initial_step(status: CleaningStatus) -> str:
    if status == CleaningStatus.COMPLETED:
        return "complete"
    if status == CleaningStatus.IN_PROGRESS:
        return "checklist"
    return "briefing"


def sync_step(step: str, status: CleaningStatus) -> str:
    """Follow a status change without throwing away progress."""
    if status == CleaningStatus.COMPLETED:
        return "complete"
    if status == CleaningStatus.IN_PROGRESS and step == "briefing":
        return "checklist"
    if status in (CleaningStatus.SCHEDULED, CleaningStatus.ASSIGNED) and step == "complete":
        return "briefing"
    return step


def checklist_threshold(total_items: int) -> int:
    return math.floor(total_items * CHECKLIST_COMPLETION_RATIO)


@dataclass
class WizardState:
    step: str = "briefing"
    checklist: list[dict] = field(default_factory=lambda: copy.deepcopy(DEFAULT_CHECKLIST))
    completed_items: list[str] = field(default_factory=list)
    photos: list[str] = field(default_factory=list)
    rating: dict[str, int] = field(default_factory=dict)
    issues: list[dict] = field(default_factory=list)
    products: list[dict] = field(default_factory=list)
    notes: str = ""

    @classmethod
    def from_cleaning(cls, cleaning: dict, status: CleaningStatus) -> "WizardState":
        saved = cleaning.get("wizard") or {}
        state = cls(
            step=saved.get("step") or cleaning.get("wizard_step") or initial_step(status),
            checklist=saved.get("checklist") or copy.deepcopy(DEFAULT_CHECKLIST),
            completed_items=list(
                saved.get("completed_items") or cleaning.get("completed_checklist") or []
            ),
            photos=list(saved.get("photos") or cleaning.get("photos") or []),
            rating=dict(saved.get("rating") or {}),
            issues=list(saved.get("issues") or []),
            products=list(saved.get("products") or []),
            notes=saved.get("notes") or cleaning.get("operator_notes") or "",
        )
        if state.step not in STEPS:
            state.step = initial_step(status)
        state.step = sync_step(state.step, status)
        return state

    def to_document(self) -> dict:
        return asdict(self)

    @property
    def completed_count(self) -> int:
        ids = {item.get("id") for item in self.checklist}
        return len(ids.intersection(self.completed_items))

    @property
    def rating_complete(self) -> bool:
        return is_rating_complete(self.rating)


def completion_blockers(state: WizardState) -> list[str]:
    blockers = []
    needed = checklist_threshold(len(state.checklist))
    if state.completed_count < needed:
        blockers.append(f"Checklist: {state.completed_count}/{needed} items done")
    if len(state.photos) < MIN_WIZARD_PHOTOS:
        blockers.append(f"Photos: {len(state.photos)}/{MIN_WIZARD_PHOTOS} uploaded")
    if not state.rating_complete:
        missing = [c for c in RATING_CATEGORIES if c not in state.rating]
        blockers.append("Rating incomplete" + (f": {', '.join(missing)}" if missing else ""))
    return blockers


def can_complete(state: WizardState) -> bool:
    return not completion_blockers(state)


def advance_blocker(state: WizardState, status: CleaningStatus) -> Optional[str]:
    if state.step == "complete":
        return "Wizard already complete"
    if state.step == "briefing" and status != CleaningStatus.IN_PROGRESS:
        return "Start the cleaning before opening the checklist"
    if state.step == "rating" and not state.rating_complete:
        return "Rate every category before continuing"
    if state.step == "photos":
        blockers = completion_blockers(state)
        if blockers:
            return "; ".join(blockers)
    return None


def advance(state: WizardState, status: CleaningStatus) -> WizardState:
    blocker = advance_blocker(state, status)
    if blocker:
        raise ValidationError(
            blocker, code=ErrorCode.WIZARD_PRECONDITION, details={"step": state.step}
        )
    state.step = STEPS[STEPS.index(state.step) + 1]
    return state


def back(state: WizardState) -> WizardState:
    index = STEPS.index(state.step)
    if 0 < index < len(STEPS) - 1:
        state.step = STEPS[index - 1]
    return state
