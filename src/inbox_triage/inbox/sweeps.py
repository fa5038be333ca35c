"""
Auto-archive and inbox bankruptcy sweeps.

Stale items that nobody triaged are archived with a system tag recording why
and when, so they can be found (and restored) from the archive view. Each
sweep writes one ``AuditLog`` row when it archives anything.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional

import structlog
from pydantic import BaseModel

from inbox_triage.classification.schemas import ItemStatus, Tag, TagType
from inbox_triage.config import settings
from inbox_triage.db.database import Database
from inbox_triage.db.models import AuditLog, InboxItem, User, utcnow
from inbox_triage.errors import InvalidStateError
from inbox_triage.inbox.service import get_owned_item
from inbox_triage.inbox.status import ACTIVE_STATUSES, transition
from inbox_triage.inbox.user_settings import get_auto_archive_days


logger = structlog.get_logger(__name__)

UNPROCESSED_TAG_PREFIX = "Unprocessed"
BANKRUPTCY_TAG_PREFIX = "Bankruptcy"
SYSTEM_TAG_PREFIXES = (UNPROCESSED_TAG_PREFIX, BANKRUPTCY_TAG_PREFIX)

AUDIT_AUTO_ARCHIVE = "AUTO_ARCHIVE"
AUDIT_BANKRUPTCY = "INBOX_BANKRUPTCY"


class ArchiveFilter(str, Enum):
    ALL = "all"
    UNPROCESSED = "unprocessed"
    BANKRUPTCY = "bankruptcy"


class AutoArchiveResult(BaseModel):
    warned: int = 0
    archived: int = 0


@dataclass
class ArchivedPage:
    items: List[InboxItem] = field(default_factory=list)
    next_cursor: Optional[str] = None
    total: int = 0
    unprocessed: int = 0
    bankruptcy: int = 0


def _system_tag(prefix: str, now: datetime) -> Dict:
    return Tag(type=TagType.SYSTEM, value=f"{prefix} - {now.strftime('%Y-%m-%d')}", confidence=1.0).to_blob()


def _has_tag_prefix(item: InboxItem, prefix: str) -> bool:
    return any(
        isinstance(tag, dict) and str(tag.get("value", "")).startswith(prefix)
        for tag in (item.tags or [])
    )


def _archive_with_tag(item: InboxItem, prefix: str, now: datetime) -> None:
    item.tags = list(item.tags or []) + [_system_tag(prefix, now)]
    transition(item, ItemStatus.ARCHIVED, now)


# ============================================================================
# SWEEPS
# ============================================================================

def process_auto_archive(db: Database, user_id: str, now: Optional[datetime] = None) -> AutoArchiveResult:
    """
    Warn items approaching the owner's cutoff and archive items past it.

    A cutoff of 0 days disables the sweep for that user.
    """
    now = now or utcnow()

    with db.session() as session:
        days = get_auto_archive_days(session, user_id)
        if days == 0:
            return AutoArchiveResult()

        archive_cutoff = now - timedelta(days=days)
        warning_cutoff = now - timedelta(days=days - settings.auto_archive_warning_days)

        to_warn = (
            session.query(InboxItem)
            .filter(InboxItem.user_id == user_id)
            .filter(InboxItem.status.in_(ACTIVE_STATUSES))
            .filter(InboxItem.created_at < warning_cutoff)
            .filter(InboxItem.created_at >= archive_cutoff)
            .filter(InboxItem.auto_archive_warning.is_(None))
            .all()
        )
        for item in to_warn:
            item.auto_archive_warning = True
            item.auto_archive_date = now + timedelta(days=settings.auto_archive_warning_days)

        to_archive = (
            session.query(InboxItem)
            .filter(InboxItem.user_id == user_id)
            .filter(InboxItem.status.in_(ACTIVE_STATUSES))
            .filter(InboxItem.created_at < archive_cutoff)
            .all()
        )
        for item in to_archive:
            _archive_with_tag(item, UNPROCESSED_TAG_PREFIX, now)

        if to_archive:
            session.add(AuditLog(
                user_id=user_id,
                action=AUDIT_AUTO_ARCHIVE,
                meta={"items_archived": len(to_archive), "timestamp": now.isoformat()},
            ))

    result = AutoArchiveResult(warned=len(to_warn), archived=len(to_archive))
    logger.info("auto_archive_processed", user_id=user_id, days=days, **result.model_dump())
    return result


def declare_bankruptcy(db: Database, user_id: str, now: Optional[datetime] = None) -> int:
    """
    Archive every pending or processing item at once.

    Returns:
        Number of items archived
    """
    now = now or utcnow()

    with db.session() as session:
        items = (
            session.query(InboxItem)
            .filter(InboxItem.user_id == user_id)
            .filter(InboxItem.status.in_(ACTIVE_STATUSES))
            .all()
        )
        if not items:
            return 0

        for item in items:
            _archive_with_tag(item, BANKRUPTCY_TAG_PREFIX, now)

        session.add(AuditLog(
            user_id=user_id,
            action=AUDIT_BANKRUPTCY,
            meta={"items_archived": len(items), "timestamp": now.isoformat()},
        ))

    logger.warning("inbox_bankruptcy_declared", user_id=user_id, archived=len(items))
    return len(items)


def run_auto_archive_for_all_users(db: Database, now: Optional[datetime] = None) -> AutoArchiveResult:
    """Cron entry point: run the sweep for every user; one user's failure does not stop the rest."""
    now = now or utcnow()

    with db.session() as session:
        user_ids = [row.id for row in session.query(User.id).all()]

    totals = AutoArchiveResult()
    failed = 0
    for user_id in user_ids:
        try:
            result = process_auto_archive(db, user_id, now=now)
        except Exception as e:
            failed += 1
            logger.error("auto_archive_user_failed", user_id=user_id, error=str(e), error_type=type(e).__name__)
            continue
        totals.warned += result.warned
        totals.archived += result.archived

    logger.info(
        "auto_archive_run_completed",
        users=len(user_ids),
        failed_users=failed,
        warned=totals.warned,
        archived=totals.archived,
    )
    return totals


# ============================================================================
# ARCHIVE VIEW
# ============================================================================

def restore_from_archive(db: Database, user_id: str, item_id: str) -> InboxItem:
    """
    Bring an archived item back to ``pending``, dropping warnings and system tags.

    Raises:
        NotFoundError: Unknown item
        InvalidStateError: Item is not archived
    """
    with db.session() as session:
        item = get_owned_item(session, user_id, item_id)
        if item.status != ItemStatus.ARCHIVED.value:
            raise InvalidStateError("Item is not archived")

        item.tags = [
            tag for tag in (item.tags or [])
            if not (isinstance(tag, dict) and str(tag.get("value", "")).startswith(SYSTEM_TAG_PREFIXES))
        ]
        item.auto_archive_warning = None
        item.auto_archive_date = None
        transition(item, ItemStatus.PENDING)

    logger.info("inbox_item_restored", item_id=item_id, user_id=user_id)
    return item


def auto_archive_warnings(db: Database, user_id: str) -> List[InboxItem]:
    """Active items that will be auto-archived soon, soonest first."""
    with db.session() as session:
        return (
            session.query(InboxItem)
            .filter(InboxItem.user_id == user_id)
            .filter(InboxItem.status.in_(ACTIVE_STATUSES))
            .filter(InboxItem.auto_archive_warning.is_(True))
            .order_by(InboxItem.auto_archive_date.asc())
            .all()
        )


def archived_items(
    db: Database,
    user_id: str,
    archive_filter: ArchiveFilter = ArchiveFilter.ALL,
    limit: int = 50,
    cursor: Optional[str] = None,
) -> ArchivedPage:
    """Archived items, most recently archived first, with per-reason totals."""
    with db.session() as session:
        archived = (
            session.query(InboxItem)
            .filter(InboxItem.user_id == user_id)
            .filter(InboxItem.status == ItemStatus.ARCHIVED.value)
            .order_by(InboxItem.archived_at.desc(), InboxItem.id.desc())
            .all()
        )

    unprocessed = sum(1 for item in archived if _has_tag_prefix(item, UNPROCESSED_TAG_PREFIX))
    bankruptcy = sum(1 for item in archived if _has_tag_prefix(item, BANKRUPTCY_TAG_PREFIX))

    archive_filter = ArchiveFilter(archive_filter)
    if archive_filter == ArchiveFilter.UNPROCESSED:
        filtered = [item for item in archived if _has_tag_prefix(item, UNPROCESSED_TAG_PREFIX)]
    elif archive_filter == ArchiveFilter.BANKRUPTCY:
        filtered = [item for item in archived if _has_tag_prefix(item, BANKRUPTCY_TAG_PREFIX)]
    else:
        filtered = archived

    if cursor:
        ids = [item.id for item in filtered]
        filtered = filtered[ids.index(cursor):] if cursor in ids else filtered

    page = filtered[:limit + 1]
    next_cursor = page.pop().id if len(page) > limit else None

    return ArchivedPage(
        items=page,
        next_cursor=next_cursor,
        total=len(archived),
        unprocessed=unprocessed,
        bankruptcy=bankruptcy,
    )
