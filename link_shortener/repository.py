"""Persistence for link records."""

from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from . import models
from .utils import utcnow


class LinkRepository:
    """CRUD over links, bound to one SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_shortened(self, shortened: str) -> Optional[models.Link]:
        return self.db.query(models.Link).filter_by(shortened=shortened).first()

    def find_active(self, shortened: str) -> Optional[models.Link]:
        """Link that may be redirected to. Expiry is left to the caller and the sweeper."""
        return (
            self.db.query(models.Link)
            .filter(models.Link.shortened == shortened, models.Link.is_active.is_(True))
            .first()
        )

    def shortened_exists(self, shortened: str) -> bool:
        stmt = select(models.Link.id).where(models.Link.shortened == shortened).limit(1)
        return self.db.execute(stmt).first() is not None

    def list_by_owner(self, key_id: str) -> List[models.Link]:
        return (
            self.db.query(models.Link)
            .filter_by(created_by=key_id)
            .order_by(models.Link.created_at)
            .all()
        )

    def list_all(self) -> List[models.Link]:
        return self.db.query(models.Link).order_by(models.Link.created_at).all()

    def create(self, link: models.Link) -> models.Link:
        self.db.add(link)
        self.db.commit()
        self.db.refresh(link)
        return link

    def save(self, link: models.Link) -> models.Link:
        link.updated_at = utcnow()
        self.db.commit()
        self.db.refresh(link)
        return link

    def delete(self, link: models.Link) -> None:
        self.db.delete(link)
        self.db.commit()

    def record_visit(
        self,
        link: models.Link,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
        referrer: Optional[str] = None,
    ) -> models.LinkVisit:
        """Bump the visit counter and store one LinkVisit in a single transaction.

        The counter is incremented in SQL so concurrent visits never lose updates.
        """
        now = utcnow()
        try:
            self.db.execute(
                update(models.Link)
                .where(models.Link.id == link.id)
                .values(visits=models.Link.visits + 1, last_visited_at=now)
                .execution_options(synchronize_session=False)
            )
            visit = models.LinkVisit(
                link_id=link.id,
                visited_at=now,
                user_agent=user_agent,
                ip_address=ip_address,
                referrer=referrer,
            )
            self.db.add(visit)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return visit
