class VoucherError(Exception):
    pass


class MalformedCodeError(VoucherError):
    pass


class InvalidVoucherError(VoucherError):
    pass


class VoucherDeniedError(VoucherError):
    reason: str = "DENIED"
    message: str = "Voucher cannot be redeemed"

    def __str__(self) -> str:
        return self.message


class SelfRedemptionError(VoucherDeniedError):
    reason = "SELF_REDEMPTION"
    message = "You cannot redeem a voucher you created"


class EmailMismatchError(VoucherDeniedError):
    reason = "EMAIL_MISMATCH"
    message = "This voucher was sent to a different email address"


class AlreadyRedeemedError(VoucherDeniedError):
    reason = "ALREADY_REDEEMED"
    message = "This voucher has already been redeemed"
