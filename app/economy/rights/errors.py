from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from app.economy.rights.types import AccessDecision


class RightsError(Exception):
    pass


class NoAccessError(RightsError):
    def __init__(self, decision: AccessDecision) -> None:
        super().__init__(decision.method.value)
        self.decision = decision


class InsufficientBalanceError(RightsError):
    pass


class InvalidCreditError(RightsError):
    pass


class UnknownRightsTypeError(RightsError):
    pass


class PersistenceFailureError(RightsError):
    pass
