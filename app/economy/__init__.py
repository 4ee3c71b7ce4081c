from app.economy.engine import EntitlementEngine, build_engine, get_engine
from app.economy.referrals.chain import ReferralRewardChain
from app.economy.referrals.invites import InviteService
from app.economy.rights.consumption import ConsumptionEngine
from app.economy.rights.issuance import IssuanceService
from app.economy.rights.resolver import AccessResolver
from app.economy.vouchers.service import VoucherService

__all__ = [
    "AccessResolver",
    "ConsumptionEngine",
    "EntitlementEngine",
    "InviteService",
    "IssuanceService",
    "ReferralRewardChain",
    "VoucherService",
    "build_engine",
    "get_engine",
]
