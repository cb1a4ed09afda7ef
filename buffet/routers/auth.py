import logging
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session
from buffet.schemas.common import Token
from buffet.util.security import create_token, verify_pw
from buffet.models.core import User
from buffet.db import get_db
from buffet.deps import require_auth

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

@router.post("/login", response_model=Token)
def login(username: str, password: str, db: Session = Depends(get_db)):
    user = db.execute(select(User).where(User.username == username)).scalar_one_or_none()
    if not user or not user.is_active or not verify_pw(user.pass_hash, password):
        logger.warning("Failed login for %s", username)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return Token(access_token=create_token(user.id))

@router.get("/me")
def me(db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    user = db.get(User, sub)
    if not user:
        raise HTTPException(status_code=401, detail="Unknown user")
    return {
        "id": user.id,
        "username": user.username,
        "full_name": user.full_name,
        "role": user.role.name if user.role else None,
        "permissions": list(user.role.permissions or []) if user.role else [],
    }
