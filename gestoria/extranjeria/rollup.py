"""Agreed / paid / pending totals per expediente and per cliente.

Totals are recomputed from the payments table on every call. Pending is
``agreed - paid`` and goes negative when a case file is overpaid.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from gestoria.core.errors import NotFoundError
from gestoria.core.extensions import db
from gestoria.core.models import Cliente, Expediente, Pago
from gestoria.core.utils import CENT

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class Balance:
    agreed: Decimal
    paid: Decimal

    @property
    def pending(self) -> Decimal:
        return (self.agreed - self.paid).quantize(CENT)

    @property
    def overpaid(self) -> bool:
        return self.pending < 0


def sum_amounts(amounts: Iterable[Decimal | int | float | str | None]) -> Decimal:
    total = ZERO
    for amount in amounts:
        if amount is None:
            continue
        total += amount if isinstance(amount, Decimal) else Decimal(str(amount))
    return total.quantize(CENT)


def expediente_balance(expediente_id: int) -> Balance:
    expediente = db.session.get(Expediente, expediente_id)
    if not expediente:
        raise NotFoundError("Expediente no encontrado")
    importes = db.session.query(Pago.importe).filter(Pago.expediente_id == expediente.id).all()
    return Balance(
        agreed=sum_amounts([expediente.precio_acordado]),
        paid=sum_amounts(row[0] for row in importes),
    )


def cliente_balance(cliente_id: int) -> Balance:
    cliente = db.session.get(Cliente, cliente_id)
    if not cliente:
        raise NotFoundError("Cliente no encontrado")
    precios = db.session.query(Expediente.precio_acordado).filter(Expediente.cliente_id == cliente.id).all()
    importes = db.session.query(Pago.importe).filter(Pago.cliente_id == cliente.id).all()
    return Balance(
        agreed=sum_amounts(row[0] for row in precios),
        paid=sum_amounts(row[0] for row in importes),
    )
