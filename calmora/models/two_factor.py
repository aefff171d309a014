# calmora/models/two_factor.py
from __future__ import annotations
import datetime as dt
import enum
from typing import TYPE_CHECKING
from sqlalchemy import String, Boolean, Integer, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from calmora.core.db import Base

if TYPE_CHECKING:
    from calmora.models.user import User
    from calmora.models.recovery_code import RecoveryCode


class TwoFactorState(str, enum.Enum):
    disabled = "disabled"
    pending_verification = "pending_verification"
    enabled = "enabled"


class TwoFactorRecord(Base):
    __tablename__ = "user_2fa"
    __table_args__ = (
        CheckConstraint("NOT is_enabled OR secret IS NOT NULL", name="ck_user_2fa_enabled_has_secret"),
    )

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    secret: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # se incrementa en cada escritura (compare-and-set)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    enabled_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_used_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # último paso TOTP aceptado: un código no se acepta dos veces
    last_totp_step: Mapped[int | None] = mapped_column(Integer, nullable=True)
    updated_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    user: Mapped["User"] = relationship("User", back_populates="two_factor", uselist=False)
    recovery_codes: Mapped[list["RecoveryCode"]] = relationship(
        "RecoveryCode", cascade="all, delete-orphan", passive_deletes=True
    )

    @property
    def state(self) -> TwoFactorState:
        return state_of(self)


def state_of(record: TwoFactorRecord | None) -> TwoFactorState:
    if record is None or not record.secret:
        return TwoFactorState.disabled
    if record.is_enabled:
        return TwoFactorState.enabled
    return TwoFactorState.pending_verification
