from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.models.user import User

logger = structlog.get_logger()


class UserDirectory:
    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, user_id: int) -> Optional[User]:
        return self.db.get(User, user_id)

    def get_or_create_by_email(self, email: str, name: Optional[str] = None) -> User:
        """
        Upsert by email. Guest checkouts have no account yet, so one is created
        on the spot; an existing account is returned unchanged. Commits on its
        own, before the caller starts writing.
        """
        normalized = email.strip().lower()
        user = self.db.query(User).filter(User.email == normalized).first()
        if user is not None:
            return user

        try:
            user = User(email=normalized, name=name)
            self.db.add(user)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            user = self.db.query(User).filter(User.email == normalized).one()
            return user

        logger.info("buyer_created", user_id=user.id)
        return user
