from app.db.repo.entitlements_repo import EntitlementsRepo
from app.db.repo.ledger_repo import LedgerRepo
from app.db.repo.vouchers_repo import VouchersRepo

__all__ = [
    "EntitlementsRepo",
    "LedgerRepo",
    "VouchersRepo",
]
