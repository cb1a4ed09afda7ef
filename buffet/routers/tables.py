from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from buffet.db import get_db
from buffet.deps import require_auth, require_perm
from buffet.models.core import DiningTable, TableStatus
from buffet.schemas.orders import TableStatusIn, OutOfServiceIn
from buffet.services import occupancy, sessions

router = APIRouter(prefix="/tables", tags=["tables"])


def _row_from_table(t: DiningTable) -> dict:
    return {
        "id": t.id,
        "table_number": t.table_number,
        "zone": t.zone,
        "capacity": t.capacity,
        "status": t.status.value,
        "is_out_of_service": t.is_out_of_service,
        "service_notes": t.service_notes,
    }


@router.get("/dashboard")
def dashboard(branch_id: str | None = None, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    data = occupancy.table_dashboard(db, branch_id=branch_id)
    tables = []
    for t, s in data["tables"]:
        row = _row_from_table(t)
        row["session"] = None
        if s:
            remaining = sessions.time_remaining(s)
            row["session"] = {
                "id": s.id,
                "adult_count": s.adult_count,
                "child_count": s.child_count,
                "remaining_minutes": remaining.remaining_minutes,
                "is_paused": remaining.is_paused,
                "is_overtime": remaining.is_overtime,
            }
        tables.append(row)
    return {"summary": data["summary"], "tables": tables}


@router.patch("/{table_id}/status")
def set_status(table_id: str, body: TableStatusIn, db: Session = Depends(get_db),
               sub: str = Depends(require_perm("SESSION_MANAGE"))):
    t = occupancy.set_table_status(db, table_id=table_id, status=TableStatus(body.status), actor_user_id=sub)
    db.commit()
    return _row_from_table(t)


@router.post("/{table_id}/out-of-service")
def toggle_out_of_service(table_id: str, body: OutOfServiceIn | None = None, db: Session = Depends(get_db),
                          sub: str = Depends(require_perm("SESSION_MANAGE"))):
    t = occupancy.toggle_out_of_service(db, table_id=table_id, notes=body.notes if body else None,
                                        actor_user_id=sub)
    db.commit()
    return _row_from_table(t)
