from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from buffet.db import get_db
from buffet.deps import require_auth, require_perm
from buffet.schemas.common import SettingIn
from buffet.services import settings_store

router = APIRouter(prefix="/settings", tags=["settings"])

@router.get("")
def list_settings(db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return settings_store.list_settings(db)

@router.put("/{key}")
def put_setting(key: str, body: SettingIn, db: Session = Depends(get_db),
                sub: str = Depends(require_perm("SETTINGS_EDIT"))):
    row = settings_store.upsert_setting(db, key=key, value=body.value, description=body.description)
    db.commit()
    return {"key": row.key, "value": row.value, "description": row.description}
