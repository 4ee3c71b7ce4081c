from app.db.models.entitlements import Entitlement
from app.db.models.ledger_entries import LedgerEntry
from app.db.models.vouchers import Voucher

__all__ = [
    "Entitlement",
    "LedgerEntry",
    "Voucher",
]
