"""
Property ratings left by operators at the end of a cleaning.

Each rating scores five categories from 1 to 5. Per-property summaries
average the categories over a window of months, place the overall score in a
band, flag weak categories and compare the last two months.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

from cleanops import issues as issue_service
from cleanops.db import DbClient, DocumentRecord
from cleanops.errors import ErrorCode, ValidationError
from cleanops.notifications import Notifier
from cleanops.types import CLEANINGS, PROPERTY_RATINGS, CurrentUser

logger = logging.getLogger(__name__)

RATING_CATEGORIES = (
    "guest_cleanliness",
    "checkout_punctuality",
    "property_condition",
    "damages",
    "access_ease",
)

CATEGORY_LABELS = {
    "guest_cleanliness": "Pulizia ospiti",
    "checkout_punctuality": "Puntualità checkout",
    "property_condition": "Stato proprietà",
    "damages": "Danni",
    "access_ease": "Facilità accesso",
}

INSIGHT_THRESHOLDS = {"warning": 3.0, "critical": 2.0, "min_ratings": 3}

SCORE_BANDS = (
    (4.75, "excellence"),
    (4.5, "great"),
    (4.25, "very_good"),
    (4.0, "good"),
    (3.75, "fair"),
    (3.5, "sufficient"),
    (3.25, "attention"),
    (3.0, "improve"),
    (2.5, "problematic"),
)

TREND_DELTA = 0.2


def _valid_score(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 1 <= value <= 5


def is_rating_complete(scores: Mapping[str, Any]) -> bool:
    return all(_valid_score(scores.get(c)) for c in RATING_CATEGORIES)


def validate_scores(scores: Mapping[str, Any]) -> dict[str, int]:
    invalid = [c for c in RATING_CATEGORIES if not _valid_score(scores.get(c))]
    if invalid:
        raise ValidationError(
            "Every category needs a score between 1 and 5",
            code=ErrorCode.RATING_INVALID,
            details={"invalid": invalid},
        )
    return {c: scores[c] for c in RATING_CATEGORIES}


def average(scores: Mapping[str, int]) -> float:
    return round(sum(scores[c] for c in RATING_CATEGORIES) / len(RATING_CATEGORIES), 2)


def score_band(score: float) -> str:
    for minimum, band in SCORE_BANDS:
        if score >= minimum:
            return band
    return "critical"


def _insight_level(score: float) -> str:
    if score < INSIGHT_THRESHOLDS["critical"]:
        return "critical"
    if score < INSIGHT_THRESHOLDS["warning"]:
        return "warning"
    return "ok"


def category_insights(averages: Mapping[str, float], rating_count: int) -> list[dict]:
    if rating_count < INSIGHT_THRESHOLDS["min_ratings"]:
        return []
    insights = []
    for category, score in averages.items():
        label = CATEGORY_LABELS.get(category, category)
        insights.append(
            {
                "category": category,
                "label": label,
                "score": score,
                "level": _insight_level(score),
                "band": score_band(score),
                "title": f"{label}: {score_band(score).replace('_', ' ')}",
                "message": f"{label} averages {score:.2f} out of 5 over {rating_count} ratings",
            }
        )
    insights.sort(key=lambda i: i["score"])
    return insights


def _month_key(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m")


def monthly_trend(ratings: list[dict]) -> dict:
    buckets: dict[str, list[float]] = defaultdict(list)
    for rating in ratings:
        if rating.get("created_at") and rating.get("average") is not None:
            buckets[_month_key(rating["created_at"])].append(rating["average"])
    months = [
        {"month": month, "average": round(sum(values) / len(values), 2), "count": len(values)}
        for month, values in sorted(buckets.items())
    ]
    direction = "stable"
    if len(months) >= 2:
        delta = months[-1]["average"] - months[-2]["average"]
        if delta > TREND_DELTA:
            direction = "improving"
        elif delta < -TREND_DELTA:
            direction = "declining"
    return {"direction": direction, "months": months}


def create_rating(
    db: DbClient, notifier: Notifier, user: CurrentUser, payload: dict
) -> DocumentRecord:
    if not payload.get("cleaning_id") or not payload.get("property_id"):
        raise ValidationError("cleaning_id and property_id are required")
    scores = validate_scores(payload.get("scores") or payload)
    now = time.time()
    data = {
        "cleaning_id": payload["cleaning_id"],
        "property_id": payload["property_id"],
        "operator_id": user.id,
        "operator_name": user.display_name,
        "scores": scores,
        "average": average(scores),
        "notes": payload.get("notes") or "",
        "created_at": now,
    }
    if "supplies_complete" in payload:
        data["supplies_complete"] = bool(payload["supplies_complete"])
    issues = [
        {**issue, "property_id": payload["property_id"], "cleaning_id": payload["cleaning_id"]}
        for issue in payload.get("issues") or []
    ]
    for issue in issues:
        issue_service.validate_issue(issue)
    record = db.add(PROPERTY_RATINGS, data)

    issue_ids = []
    for issue in issues:
        created = issue_service.create_issue(db, notifier, user, {**issue, "rating_id": record.id})
        issue_ids.append(created.id)
    if issue_ids:
        record = db.update(PROPERTY_RATINGS, record.id, {"issue_ids": issue_ids})

    cleaning_changes = {"rating_id": record.id, "rating_score": data["average"]}
    if issue_ids:
        cleaning_changes["issue_ids"] = issue_ids
    if db.update(CLEANINGS, payload["cleaning_id"], cleaning_changes) is None:
        logger.warning("Rating %s refers to missing cleaning %s", record.id, payload["cleaning_id"])
    return record


def get_rating_for_cleaning(db: DbClient, cleaning_id: str) -> Optional[DocumentRecord]:
    found = db.query(PROPERTY_RATINGS, [("cleaning_id", "==", cleaning_id)], limit=1)
    return found[0] if found else None


def property_summary(db: DbClient, property_id: str, months: int = 3) -> dict:
    since = (datetime.now(timezone.utc) - timedelta(days=30 * months)).timestamp()
    records = db.query(
        PROPERTY_RATINGS,
        [("property_id", "==", property_id), ("created_at", ">=", since)],
        order_by="created_at",
        descending=True,
    )
    ratings = [r.as_dict() for r in records]

    averages = {}
    for category in RATING_CATEGORIES:
        values = [
            r["scores"][category]
            for r in ratings
            if (r.get("scores") or {}).get(category, 0) > 0
        ]
        if values:
            averages[category] = round(sum(values) / len(values), 2)

    overall = round(sum(averages.values()) / len(averages), 2) if averages else 0.0
    return {
        "property_id": property_id,
        "months": months,
        "count": len(ratings),
        "averages": averages,
        "overall": overall,
        "band": score_band(overall) if ratings else None,
        "insights": category_insights(averages, len(ratings)),
        "trend": monthly_trend(ratings),
        "ratings": ratings[:20],
    }
