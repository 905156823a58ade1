import re
from typing import Optional

from sqlalchemy import select

from adiva.extensions import db
from adiva.models import User, UserSettings, utcnow
from adiva.utils.errors import UnauthorizedError, ValidationError
from adiva.utils.logger import logger

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6
CONFIRM_TEXT = "CONFIRM"


class AuthService:
    """Account registration, login and step-up verification."""

    @staticmethod
    def get_user(user_id) -> Optional[User]:
        if user_id is None:
            return None
        user = db.session.get(User, user_id)
        if user is None or not user.is_active:
            return None
        return user

    @staticmethod
    def find_by_email(email: str) -> Optional[User]:
        return db.session.execute(
            select(User).filter_by(email=email.strip().lower())
        ).scalar_one_or_none()

    @staticmethod
    def register(name: str, email: str, password: str, role: str = "user") -> User:
        for field, value in (("Name", name), ("Email", email), ("Password", password)):
            if value is not None and not isinstance(value, str):
                raise ValidationError(f"{field} must be a string")
        if not name or not name.strip():
            raise ValidationError("Name is required")
        if not email or not EMAIL_PATTERN.match(email.strip()):
            raise ValidationError("Please enter a valid email")
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        if AuthService.find_by_email(email):
            raise ValidationError("An account with this email already exists")

        user = User(name=name.strip()[:50], email=email.strip().lower(), role=role)
        user.set_password(password)
        user.settings = UserSettings()
        db.session.add(user)
        db.session.commit()
        logger.info(f"Registered user {user.id}")
        return user

    @staticmethod
    def authenticate(email: str, password: str) -> User:
        if not isinstance(email, str) or not isinstance(password, str):
            raise UnauthorizedError("Invalid email or password")

        user = AuthService.find_by_email(email)
        if user is None or not user.is_active or not user.check_password(password):
            raise UnauthorizedError("Invalid email or password")

        user.last_login = utcnow()
        db.session.commit()
        return user

    @staticmethod
    def get_user_settings(user: User) -> UserSettings:
        if user.settings is None:
            user.settings = UserSettings()
            db.session.commit()
        return user.settings

    @staticmethod
    def verify_step_up(user: User, confirm) -> None:
        """
        Re-verify an admin's password before a privileged write.

        Raises:
            ValidationError: confirmation text or password missing
            UnauthorizedError: password does not match
        """
        if not isinstance(confirm, dict) or confirm.get("text") != CONFIRM_TEXT:
            raise ValidationError("Two-step confirmation required")
        password = confirm.get("password")
        if not isinstance(password, str) or not password:
            raise ValidationError("Two-step confirmation required")

        if not user.check_password(password):
            logger.warning(f"Step-up verification failed for user {user.id}")
            raise UnauthorizedError("Invalid password")
