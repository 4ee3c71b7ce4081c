from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String, text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base


class Entitlement(Base):
    __tablename__ = "entitlements"
    __table_args__ = (
        CheckConstraint("rights_type IN ('pass','era')", name="type"),
        CheckConstraint("uses_remaining >= -1", name="uses_remaining_floor"),
        CheckConstraint(
            "NOT (rights_type = 'pass' AND purchase_reference IS NOT NULL)",
            name="pass_without_purchase",
        ),
        Index("idx_entitlements_account_type_value", "account_id", "rights_type", "rights_value"),
        Index("idx_entitlements_account_created", "account_id", "created_at"),
        Index("idx_entitlements_expires", "expires_at"),
    )

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True)
    account_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rights_type: Mapped[str] = mapped_column(String(8), nullable=False)
    rights_value: Mapped[str] = mapped_column(String(64), nullable=False)
    uses_remaining: Mapped[int] = mapped_column(Integer, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by_account_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    recipient_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    source_voucher_code: Mapped[str | None] = mapped_column(
        String(160), unique=True, nullable=True
    )
    purchase_reference: Mapped[str | None] = mapped_column(
        String(128), unique=True, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )
