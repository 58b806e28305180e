import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from app.models.access_grant import AccessGrant, GrantSource

logger = logging.getLogger(__name__)


def get_grant(
    session: Session,
    user_id: int,
    content_type: str,
    content_id: str,
) -> Optional[AccessGrant]:
    return session.exec(
        select(AccessGrant)
        .where(AccessGrant.user_id == user_id)
        .where(AccessGrant.content_type == str(content_type))
        .where(AccessGrant.content_id == str(content_id))
    ).first()


def has_grant(
    session: Session,
    user_id: int,
    content_type: str,
    content_id: str,
) -> bool:
    return get_grant(session, user_id, content_type, content_id) is not None


def grant_if_absent(
    session: Session,
    *,
    user_id: int,
    content_type: str,
    content_id: str,
    source: GrantSource,
    transaction_id: Optional[int] = None,
) -> AccessGrant:
    """
    Atomic insert-unless-present on (user, content type, content id).

    The insert runs inside a SAVEPOINT so a lost race only rolls back the
    grant row. The caller owns the outer commit. The unique constraint decides
    the winner and the loser reads the winner's grant.
    """
    content_type = getattr(content_type, "value", content_type)

    existing = get_grant(session, user_id, content_type, content_id)
    if existing:
        return existing

    grant = AccessGrant(
        user_id=user_id,
        content_type=content_type,
        content_id=str(content_id),
        source=getattr(source, "value", source),
        transaction_id=transaction_id,
    )

    try:
        with session.begin_nested():
            session.add(grant)
    except IntegrityError:
        logger.info(
            f"Grant race lost for user={user_id} {content_type}/{content_id}, "
            "returning existing grant"
        )
        existing = get_grant(session, user_id, content_type, content_id)
        if existing is None:
            raise
        return existing

    logger.info(
        f"Access granted: user={user_id} {content_type}/{content_id} "
        f"source={grant.source}"
    )
    return grant


def list_grants(session: Session, user_id: int) -> List[AccessGrant]:
    return session.exec(
        select(AccessGrant)
        .where(AccessGrant.user_id == user_id)
        .order_by(AccessGrant.granted_at.desc())
    ).all()
