from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, Request
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from orderdesk.database import get_db
from orderdesk.errors import Forbidden, Unauthorized
from orderdesk.models import AdminUser


@dataclass
class Identity:
    user_id: str
    admin: Optional[AdminUser] = None

    @property
    def is_admin(self) -> bool:
        return self.admin is not None


def verify_token(request: Request, authorization: Optional[str] = Header(None)) -> str:
    if not authorization:
        raise Unauthorized("Missing Authorization header")
    try:
        scheme, token = authorization.split()
        if scheme.lower() != "bearer":
            raise ValueError("Unsupported authorization scheme")
        claims = jwt.decode(token, request.app.state.settings.jwt_secret, algorithms=["HS256"])
    except (ValueError, JWTError):
        raise Unauthorized("Unauthorized")

    user_id = claims.get("sub")
    if not user_id:
        raise Unauthorized("Unauthorized")
    return user_id


def find_active_admin(db: Session, user_id: str) -> Optional[AdminUser]:
    return db.query(AdminUser).filter_by(auth_user_id=user_id, status="active").first()


def current_identity(user_id: str = Depends(verify_token), db: Session = Depends(get_db)) -> Identity:
    return Identity(user_id=user_id, admin=find_active_admin(db, user_id))


def require_admin(identity: Identity = Depends(current_identity)) -> AdminUser:
    if not identity.is_admin:
        raise Forbidden("Unauthorized - Admin access required")
    return identity.admin
