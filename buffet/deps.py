from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt
from sqlalchemy.orm import Session
from buffet.db import get_db
from buffet.models.core import User
from buffet.util.security import decode_token

auth_scheme = HTTPBearer(auto_error=False)

ADMIN_ROLE = "ADMIN"

def require_auth(creds: HTTPAuthorizationCredentials | None = Depends(auth_scheme)) -> str:
    if not creds:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        return decode_token(creds.credentials)
    except (jwt.PyJWTError, KeyError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

def user_permissions(db: Session, user_id: str) -> set[str]:
    user = db.get(User, user_id)
    if not user or not user.is_active or not user.role:
        return set()
    return set(user.role.permissions or [])

def is_admin(db: Session, user_id: str) -> bool:
    user = db.get(User, user_id)
    return bool(user and user.is_active and user.role and user.role.name == ADMIN_ROLE)

def require_perm(code: str):
    def _dep(sub: str = Depends(require_auth), db: Session = Depends(get_db)):
        # Admin shortcut: role named ADMIN → allow
        if is_admin(db, sub):
            return sub
        if code not in user_permissions(db, sub):
            raise HTTPException(status_code=403, detail=f"Missing permission: {code}")
        return sub
    return _dep
