from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String, text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base


class Voucher(Base):
    __tablename__ = "vouchers"
    __table_args__ = (
        CheckConstraint("reward_passes >= 0", name="reward_passes_non_negative"),
        CheckConstraint("signup_bonus >= 0", name="signup_bonus_non_negative"),
        CheckConstraint(
            "(redeemed_at IS NULL) = (redeemed_by_account_id IS NULL)",
            name="redeemed_marker_consistency",
        ),
        Index("idx_vouchers_recipient_email_lower", text("lower(recipient_email)")),
        Index("idx_vouchers_created_by", "created_by_account_id"),
        Index("idx_vouchers_purpose", "purpose"),
    )

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True)
    voucher_code: Mapped[str] = mapped_column(String(160), unique=True, nullable=False)
    purpose: Mapped[str] = mapped_column(String(32), nullable=False)
    created_by_account_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    recipient_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    reward_passes: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("1"))
    signup_bonus: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("10"))
    redeemed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    redeemed_by_account_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )
