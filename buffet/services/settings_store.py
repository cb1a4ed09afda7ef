from __future__ import annotations

from decimal import Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.orm import Session

from buffet.errors import ValidationError
from buffet.models.core import Setting

VAT_PERCENT = 'vat_percent'
SERVICE_CHARGE_PERCENT = 'service_charge_percent'
BAHT_PER_POINT = 'baht_per_point'
POINTS_PER_BAHT = 'points_per_baht'

DEFAULTS: dict[str, Decimal] = {
    VAT_PERCENT: Decimal('7'),
    SERVICE_CHARGE_PERCENT: Decimal('10'),
    BAHT_PER_POINT: Decimal('1'),
    POINTS_PER_BAHT: Decimal('0.01'),
}


def _to_decimal(key: str, raw: str) -> Decimal:
    try:
        value = Decimal(str(raw).strip())
    except InvalidOperation:
        raise ValidationError(f'Setting {key} is not numeric', key=key, value=raw)
    if not value.is_finite():
        raise ValidationError(f'Setting {key} is not numeric', key=key, value=raw)
    return value


def get_number(db: Session, key: str, default: Decimal | None = None) -> Decimal:
    row = db.execute(select(Setting).where(Setting.key == key)).scalar_one_or_none()
    if row is None:
        if default is not None:
            return default
        return DEFAULTS[key]
    return _to_decimal(key, row.value)


def list_settings(db: Session) -> dict[str, str]:
    values = {key: str(value) for key, value in DEFAULTS.items()}
    for row in db.execute(select(Setting).order_by(Setting.key.asc())).scalars():
        values[row.key] = row.value
    return values


def upsert_setting(db: Session, *, key: str, value: str, description: str | None = None) -> Setting:
    if key in DEFAULTS:
        parsed = _to_decimal(key, value)
        if parsed < 0:
            raise ValidationError(f'Setting {key} cannot be negative', key=key, value=value)
    row = db.execute(select(Setting).where(Setting.key == key)).scalar_one_or_none()
    if row is None:
        row = Setting(key=key, value=str(value), description=description)
        db.add(row)
    else:
        row.value = str(value)
        if description:
            row.description = description
    db.flush()
    return row
