"""
Correction flow following a "disagree" verdict, and correction insights.

``weekly_review`` defers the item (it shows up in the disagreements queue);
``fix_now`` applies the user's category and action edits and keeps an
immutable ``UserCorrection`` row for insight.
"""

import uuid
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog
from pydantic import BaseModel, Field, model_validator
from sqlalchemy import func

from inbox_triage.classification.schemas import (
    ActionPriority,
    Category,
    Classification,
    ItemStatus,
    UserFeedback,
)
from inbox_triage.db.database import Database
from inbox_triage.db.models import ReviewSession, UserCorrection, utcnow
from inbox_triage.inbox.service import get_owned_item
from inbox_triage.inbox.status import transition
from inbox_triage.review.sessions import get_owned_session


logger = structlog.get_logger(__name__)


class CorrectionType(str, Enum):
    FIX_NOW = "fix_now"
    WEEKLY_REVIEW = "weekly_review"


class ActionCorrection(BaseModel):
    original_id: Optional[str] = None
    description: str
    keep: bool
    is_new: bool = False


class CorrectionInput(BaseModel):
    inbox_item_id: str
    user_id: str
    session_id: str
    correction_type: CorrectionType
    corrected_category: Optional[Category] = None
    corrected_actions: List[ActionCorrection] = Field(default_factory=list)
    user_reason: Optional[str] = None

    @model_validator(mode="after")
    def check_category_for_fix(self) -> "CorrectionInput":
        if self.correction_type == CorrectionType.FIX_NOW and self.corrected_category is None:
            raise ValueError("corrected_category is required for fix_now corrections")
        return self


class CorrectionResult(BaseModel):
    action: str  # deferred | corrected
    message: str
    correction_id: Optional[str] = None


class Misclassification(BaseModel):
    from_category: str
    to_category: str
    count: int


class CorrectionInsights(BaseModel):
    total_corrections: int
    misclassifications: List[Misclassification]


def _kept_actions(existing: List[Dict[str, Any]], corrections: List[ActionCorrection]) -> List[Dict[str, Any]]:
    by_id = {a.get("id"): a for a in existing if isinstance(a, dict)}
    kept = []
    for correction in corrections:
        if not correction.keep:
            continue
        original = by_id.get(correction.original_id, {})
        kept.append({
            "id": correction.original_id or str(uuid.uuid4()),
            "description": correction.description,
            "confidence": 1.0 if correction.is_new else original.get("confidence") or 0.5,
            "priority": original.get("priority") or ActionPriority.NORMAL.value,
            "owner": original.get("owner"),
            "due_date": original.get("due_date"),
            "user_added": correction.is_new,
        })
    return kept


def _link_correction(review_session: ReviewSession, item_id: str, correction_id: str) -> None:
    """Attach the correction id to the item's latest open session entry."""
    actions = list(review_session.actions or [])
    for index in range(len(actions) - 1, -1, -1):
        if actions[index].get("item_id") == item_id and not actions[index].get("undone"):
            actions[index] = {**actions[index], "correction_id": correction_id}
            review_session.actions = actions
            return


def process_correction(db: Database, correction: CorrectionInput) -> CorrectionResult:
    """
    Apply a correction chosen after a disagree verdict.

    Raises:
        NotFoundError: Unknown item or session
        InvalidStateError: Item cannot move to the required status
    """
    now = utcnow()

    with db.session() as session:
        item = get_owned_item(session, correction.user_id, correction.inbox_item_id)
        review_session = get_owned_session(session, correction.user_id, correction.session_id)

        if correction.correction_type == CorrectionType.WEEKLY_REVIEW:
            item.user_feedback = UserFeedback(
                agreed=False,
                deferred_to_weekly=True,
                session_id=correction.session_id,
            ).to_blob()
            transition(item, ItemStatus.PENDING, now)

            logger.info("correction_deferred", item_id=item.id, session_id=correction.session_id)
            return CorrectionResult(action="deferred", message="Sent to weekly review")

        classification = Classification.from_blob(item.ai_classification) or Classification()
        original_category = classification.category or Category.UNKNOWN.value
        original_confidence = classification.confidence or 0.0
        corrected_category = Category(correction.corrected_category).value

        classification.user_corrected = True
        classification.original_category = original_category
        classification.category = corrected_category
        classification.corrected_at = now

        item.ai_classification = classification.to_blob()
        item.extracted_actions = _kept_actions(item.extracted_actions or [], correction.corrected_actions)
        item.user_feedback = UserFeedback(
            agreed=False,
            corrected=True,
            corrected_category=corrected_category,
            user_reason=correction.user_reason,
            session_id=correction.session_id,
            reviewed_at=now,
        ).to_blob()
        transition(item, ItemStatus.REVIEWED, now)

        record = UserCorrection(
            inbox_item_id=item.id,
            user_id=correction.user_id,
            original_category=original_category,
            original_confidence=original_confidence,
            corrected_category=corrected_category,
            corrected_actions=[a.model_dump() for a in correction.corrected_actions],
            user_reason=correction.user_reason,
            content=item.content or "",
            created_at=now,
        )
        session.add(record)
        session.flush()
        _link_correction(review_session, item.id, record.id)

        logger.info(
            "correction_applied",
            item_id=item.id,
            original_category=original_category,
            corrected_category=corrected_category,
            kept_actions=len(item.extracted_actions),
        )
        return CorrectionResult(
            action="corrected",
            message=f"Re-filed as {corrected_category}",
            correction_id=record.id,
        )


def correction_insights(db: Database, user_id: str) -> CorrectionInsights:
    """How often each category was corrected into another one."""
    with db.session() as session:
        rows = (
            session.query(
                UserCorrection.original_category,
                UserCorrection.corrected_category,
                func.count(UserCorrection.id).label("count"),
            )
            .filter(UserCorrection.user_id == user_id)
            .group_by(UserCorrection.original_category, UserCorrection.corrected_category)
            .order_by(func.count(UserCorrection.id).desc())
            .all()
        )

    return CorrectionInsights(
        total_corrections=sum(row.count for row in rows),
        misclassifications=[
            Misclassification(from_category=row.original_category, to_category=row.corrected_category, count=row.count)
            for row in rows
            if row.original_category != row.corrected_category
        ],
    )
