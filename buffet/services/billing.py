from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy.orm import Session

from buffet.errors import NotFound
from buffet.models.core import CustomerSession, Package
from buffet.services import settings_store

CENT = Decimal('0.01')
HUNDRED = Decimal('100')


def _dec(x) -> Decimal:
    return x if isinstance(x, Decimal) else Decimal(str(x))


def _money(x) -> Decimal:
    return _dec(x).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class BillBreakdown:
    """Exact (unrounded) charges for a session; ``quantized`` gives the 2-place values."""

    session_id: str
    package_name: str
    adult_count: int
    child_count: int
    adult_price: Decimal
    child_price: Decimal
    subtotal: Decimal
    service_charge_percent: Decimal
    service_charge: Decimal
    vat_percent: Decimal
    vat: Decimal
    grand_total: Decimal

    def quantized(self) -> dict[str, Decimal]:
        return {
            'subtotal': _money(self.subtotal),
            'service_charge': _money(self.service_charge),
            'vat': _money(self.vat),
            'grand_total': _money(self.grand_total),
        }

    def to_dict(self) -> dict:
        q = self.quantized()
        return {
            'session_id': self.session_id,
            'package_name': self.package_name,
            'adult_count': self.adult_count,
            'child_count': self.child_count,
            'adult_price': float(self.adult_price),
            'child_price': float(self.child_price),
            'subtotal': float(q['subtotal']),
            'service_charge_percent': float(self.service_charge_percent),
            'service_charge': float(q['service_charge']),
            'vat_percent': float(self.vat_percent),
            'vat': float(q['vat']),
            'grand_total': float(q['grand_total']),
        }


def compute(*, adult_count: int, child_count: int, adult_price, child_price,
            service_charge_percent, vat_percent) -> tuple[Decimal, Decimal, Decimal, Decimal]:
    subtotal = _dec(adult_count) * _dec(adult_price) + _dec(child_count) * _dec(child_price)
    service_charge = subtotal * _dec(service_charge_percent) / HUNDRED
    # VAT is levied on the subtotal plus service charge
    vat = (subtotal + service_charge) * _dec(vat_percent) / HUNDRED
    return subtotal, service_charge, vat, subtotal + service_charge + vat


def calculate_bill(db: Session, session_id: str) -> BillBreakdown:
    s = db.get(CustomerSession, session_id)
    if not s:
        raise NotFound('session', session_id)
    pkg = db.get(Package, s.package_id)
    if not pkg:
        raise NotFound('package', s.package_id)

    service_pct = settings_store.get_number(db, settings_store.SERVICE_CHARGE_PERCENT)
    vat_pct = settings_store.get_number(db, settings_store.VAT_PERCENT)
    subtotal, service, vat, total = compute(
        adult_count=s.adult_count,
        child_count=s.child_count or 0,
        adult_price=pkg.adult_price,
        child_price=pkg.child_price or 0,
        service_charge_percent=service_pct,
        vat_percent=vat_pct,
    )
    return BillBreakdown(
        session_id=s.id,
        package_name=pkg.name,
        adult_count=s.adult_count,
        child_count=s.child_count or 0,
        adult_price=_dec(pkg.adult_price),
        child_price=_dec(pkg.child_price or 0),
        subtotal=subtotal,
        service_charge_percent=service_pct,
        service_charge=service,
        vat_percent=vat_pct,
        vat=vat,
        grand_total=total,
    )
