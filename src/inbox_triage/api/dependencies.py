"""
FastAPI dependencies: caller identity and the shared pipeline objects.

The database, classification engine and retry ledger are created once in the
application lifespan and stored on ``app.state``.
"""

from fastapi import Header, HTTPException, Request, status

from inbox_triage.classification.engine import ClassificationEngine
from inbox_triage.classification.ledger import RetryLedger
from inbox_triage.db.database import Database
from inbox_triage.db.models import User


def get_db(request: Request) -> Database:
    return request.app.state.db


def get_engine(request: Request) -> ClassificationEngine:
    return request.app.state.engine


def get_ledger(request: Request) -> RetryLedger:
    return request.app.state.engine.ledger


def get_current_user_id(
    request: Request,
    x_user_id: str = Header(..., alias="X-User-Id", min_length=1),
) -> str:
    """
    Caller identity, as asserted by the authenticating proxy.

    Raises:
        HTTPException: 401 if the user does not exist
    """
    db: Database = request.app.state.db
    with db.session() as session:
        user = session.get(User, x_user_id)

    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user")
    return x_user_id
