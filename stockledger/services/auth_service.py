from datetime import datetime, timedelta, timezone

import bcrypt
import jwt
from sqlalchemy.orm import Session

from stockledger.actors import ActorRole
from stockledger.config import settings
from stockledger.errors import ConflictError, NotFoundError
from stockledger.models.user import User


class TokenService:
    """Issues and decodes HS256 access tokens. Injected where needed, never global."""

    def __init__(self, secret_key: str, expire_hours: int = 72):
        self.secret_key = secret_key
        self.expire_hours = expire_hours

    def create_access_token(self, user_id: str, username: str, role: str) -> str:
        payload = {
            "sub": user_id,
            "username": username,
            "role": role,
            "exp": datetime.now(timezone.utc) + timedelta(hours=self.expire_hours),
        }
        return jwt.encode(payload, self.secret_key, algorithm="HS256")

    def decode_token(self, token: str) -> dict | None:
        try:
            return jwt.decode(token, self.secret_key, algorithms=["HS256"])
        except jwt.InvalidTokenError:
            return None


def default_token_service() -> TokenService:
    return TokenService(settings.SECRET_KEY, settings.ACCESS_TOKEN_EXPIRE_HOURS)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, hashed: str) -> bool:
    return bcrypt.checkpw(password.encode(), hashed.encode())


def authenticate(db: Session, username: str, password: str) -> User | None:
    user = db.query(User).filter(User.username == username, User.active == True).first()  # noqa: E712
    if not user or not verify_password(password, user.password_hash):
        return None
    return user


def get_user_by_id(db: Session, user_id: str) -> User | None:
    return db.query(User).filter(User.id == user_id).first()


def _create_user(db: Session, username: str, password: str, full_name: str, role: ActorRole, admin_id=None) -> User:
    existing = db.query(User).filter(User.username == username).first()
    if existing:
        raise ConflictError(f"Username '{username}' already exists", code="ALREADY_EXISTS")
    user = User(
        username=username,
        full_name=full_name or username,
        password_hash=hash_password(password),
        role=role,
        admin_id=admin_id,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def create_admin(db: Session, username: str, password: str, full_name: str = "") -> User:
    return _create_user(db, username, password, full_name, ActorRole.ADMIN)


def create_staff(db: Session, admin_id: str, username: str, password: str, full_name: str = "") -> User:
    admin = get_user_by_id(db, admin_id)
    if not admin or admin.role != ActorRole.ADMIN:
        raise NotFoundError(f"Admin {admin_id} not found", code="USER_NOT_FOUND")
    return _create_user(db, username, password, full_name, ActorRole.STAFF, admin_id=admin_id)


def ensure_default_admin(db: Session) -> None:
    """Create default admin user if no users exist."""
    if db.query(User).count() == 0:
        create_admin(
            db,
            username=settings.DEFAULT_ADMIN_USERNAME,
            password=settings.DEFAULT_ADMIN_PASSWORD,
            full_name="Admin",
        )
