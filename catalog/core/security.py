from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from catalog.db.models import AdminUser
from catalog.db.session import get_db


password_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ADMIN_SESSION_KEY = "admin_user_id"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Return True when the provided password matches the stored hash."""
    if not plain_password or not hashed_password:
        return False
    return password_context.verify(plain_password, hashed_password)


def hash_password(password: str) -> str:
    return password_context.hash(password)


def get_admin_from_session(request: Request, db: Session) -> Optional[AdminUser]:
    admin_id = request.session.get(ADMIN_SESSION_KEY)
    if not admin_id:
        return None

    admin = db.get(AdminUser, admin_id)
    if not admin or not admin.is_active:
        request.session.pop(ADMIN_SESSION_KEY, None)
        return None
    return admin


def require_admin(request: Request, db: Session = Depends(get_db)) -> AdminUser:
    """Dependency guarding the admin routes."""
    admin = get_admin_from_session(request, db)
    if admin is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Admin login required.")
    return admin
