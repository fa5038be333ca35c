"""
Filing service: turns an inbox item into a note under a project or area.

Filing is a human disposition, so the item is marked reviewed together with a
feedback record naming the destination.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

import structlog
from pydantic import BaseModel
from sqlalchemy.orm import Session

from inbox_triage.classification.schemas import ItemStatus, UserFeedback
from inbox_triage.db.models import Area, InboxItem, Note, Project, utcnow
from inbox_triage.errors import NotFoundError
from inbox_triage.inbox.status import transition


logger = structlog.get_logger(__name__)

NOTE_TITLE_MAX_LENGTH = 100


class DestinationType(str, Enum):
    PROJECT = "project"
    AREA = "area"


class FilingDestination(BaseModel):
    type: DestinationType
    id: str


class FilingService:
    """Creates notes from inbox items inside the caller's transaction."""

    def resolve_destination(self, session: Session, user_id: str, destination: FilingDestination) -> None:
        """
        Raises:
            NotFoundError: Destination missing or owned by another user
        """
        model = Project if destination.type == DestinationType.PROJECT else Area
        target = session.get(model, destination.id)
        if target is None or target.user_id != user_id:
            raise NotFoundError(f"{destination.type.value.capitalize()} not found")

    def file_item(
        self,
        session: Session,
        user_id: str,
        item: InboxItem,
        destination: FilingDestination,
        now: Optional[datetime] = None,
    ) -> Note:
        """Create the note and move the item to ``reviewed`` with ``filed_to`` feedback."""
        now = now or utcnow()
        content = item.content or ""

        note = Note(
            user_id=user_id,
            title=content[:NOTE_TITLE_MAX_LENGTH],
            content=content,
            project_id=destination.id if destination.type == DestinationType.PROJECT else None,
            area_id=destination.id if destination.type == DestinationType.AREA else None,
            source_inbox_item_id=item.id,
        )
        session.add(note)

        item.user_feedback = UserFeedback(
            agreed=True,
            filed_to={"type": destination.type.value, "id": destination.id},
            reviewed_at=now,
        ).to_blob()
        transition(item, ItemStatus.REVIEWED, now)

        logger.info(
            "inbox_item_filed",
            item_id=item.id,
            destination_type=destination.type.value,
            destination_id=destination.id,
        )
        return note
