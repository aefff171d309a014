# calmora/services/twofa_store.py
"""
Acceso a la tabla `user_2fa` (+ `recovery_codes`).

Todo pasa por acá: el servicio 2FA nunca toca la sesión directamente.
Cada llamada:
  - verifica que `user_id` sea la identidad autenticada (AccessDenied si no),
  - tiene timeout (STORAGE_TIMEOUT_SECONDS),
  - convierte errores de SQLAlchemy / timeouts en StorageUnavailable.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, TypeVar

from sqlalchemy import select, update, delete, func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from calmora.core.config import settings
from calmora.core.errors import AccessDenied, Conflict, StorageUnavailable
from calmora.core.security import verify_backup_code
from calmora.models.recovery_code import RecoveryCode
from calmora.models.two_factor import TwoFactorRecord, TwoFactorState, state_of

logger = logging.getLogger(__name__)

T = TypeVar("T")

WRITABLE_FIELDS = {"secret", "is_enabled", "enabled_at", "last_used_at", "last_totp_step"}


@dataclass(frozen=True, slots=True)
class TwoFactorSnapshot:
    user_id: str
    secret: str | None
    is_enabled: bool
    version: int
    enabled_at: datetime | None = None

    @property
    def state(self) -> TwoFactorState:
        return state_of(self)  # type: ignore[arg-type]

    @classmethod
    def from_model(cls, rec: TwoFactorRecord) -> "TwoFactorSnapshot":
        return cls(
            user_id=rec.user_id,
            secret=rec.secret,
            is_enabled=rec.is_enabled,
            version=rec.version,
            enabled_at=rec.enabled_at,
        )


def _state_clause(state: TwoFactorState):
    if state == TwoFactorState.disabled:
        return TwoFactorRecord.secret.is_(None)
    if state == TwoFactorState.pending_verification:
        return (TwoFactorRecord.secret.is_not(None)) & (TwoFactorRecord.is_enabled.is_(False))
    return TwoFactorRecord.is_enabled.is_(True)


class TwoFactorStore:
    def __init__(self, db: AsyncSession, identity: str, timeout: float | None = None):
        self.db = db
        self.identity = identity
        self.timeout = timeout if timeout is not None else settings.STORAGE_TIMEOUT_SECONDS

    def _authorize(self, user_id: str) -> None:
        if user_id != self.identity:
            logger.warning("2FA access denied: identity %s tried to touch %s", self.identity, user_id)
            raise AccessDenied("You can only manage your own two-factor settings")

    async def _run(self, op: str, fn: Callable[[], Awaitable[T]]) -> T:
        try:
            return await asyncio.wait_for(fn(), timeout=self.timeout)
        except (asyncio.TimeoutError, SQLAlchemyError) as exc:
            logger.warning("2FA storage failure during %s for %s: %r", op, self.identity, exc)
            try:
                await self.db.rollback()
            except SQLAlchemyError:
                logger.exception("rollback failed after %s", op)
            raise StorageUnavailable() from exc

    # ---------- reads ----------

    async def get_record(self, user_id: str) -> TwoFactorSnapshot | None:
        self._authorize(user_id)

        async def _get():
            res = await self.db.execute(
                select(TwoFactorRecord)
                .where(TwoFactorRecord.user_id == user_id)
                .execution_options(populate_existing=True)
            )
            rec = res.scalar_one_or_none()
            return TwoFactorSnapshot.from_model(rec) if rec else None

        return await self._run("get_record", _get)

    async def count_backup_codes(self, user_id: str) -> int:
        self._authorize(user_id)

        async def _count():
            res = await self.db.execute(
                select(func.count(RecoveryCode.id))
                .where(RecoveryCode.user_id == user_id, RecoveryCode.used.is_(False))
            )
            return int(res.scalar_one())

        return await self._run("count_backup_codes", _count)

    # ---------- writes ----------

    async def upsert_record(
        self,
        user_id: str,
        values: dict[str, Any],
        expected_state: TwoFactorState | None = None,
        expected_version: int | None = None,
        backup_code_hashes: list[str] | None = None,
    ) -> TwoFactorSnapshot:
        """
        Escribe `values` sobre el registro de `user_id`.

        Sin `expected_*`: upsert (gana el último); nunca pisa un registro
        habilitado, en ese caso -> Conflict.
        Con `expected_state` / `expected_version`: UPDATE condicional; si no
        matchea ninguna fila -> Conflict y no se toca nada.
        `backup_code_hashes` reemplaza los códigos en la misma transacción
        (lista vacía = borrarlos).
        """
        self._authorize(user_id)
        unknown = set(values) - WRITABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown 2FA fields: {sorted(unknown)}")
        conditional = expected_state is not None or expected_version is not None

        async def _write():
            now = datetime.now(timezone.utc)
            if conditional:
                stmt = update(TwoFactorRecord).where(TwoFactorRecord.user_id == user_id)
                if expected_version is not None:
                    stmt = stmt.where(TwoFactorRecord.version == expected_version)
                if expected_state is not None:
                    stmt = stmt.where(_state_clause(expected_state))
                stmt = stmt.values(
                    **values, version=TwoFactorRecord.version + 1, updated_at=now
                ).execution_options(synchronize_session=False)
                res = await self.db.execute(stmt)
                if res.rowcount != 1:
                    await self.db.rollback()
                    raise Conflict()
            else:
                await self._unconditional_upsert(user_id, values, now)

            if backup_code_hashes is not None:
                await self.db.execute(delete(RecoveryCode).where(RecoveryCode.user_id == user_id))
                self.db.add_all(RecoveryCode(user_id=user_id, code_hash=h) for h in backup_code_hashes)

            await self.db.commit()
            res = await self.db.execute(
                select(TwoFactorRecord)
                .where(TwoFactorRecord.user_id == user_id)
                .execution_options(populate_existing=True)
            )
            return TwoFactorSnapshot.from_model(res.scalar_one())

        return await self._run("upsert_record", _write)

    async def _unconditional_upsert(self, user_id: str, values: dict[str, Any], now: datetime) -> None:
        # gana el último, salvo que el registro ya esté habilitado
        if await self._update_unless_enabled(user_id, values, now):
            return
        exists = await self.db.execute(
            select(TwoFactorRecord.user_id).where(TwoFactorRecord.user_id == user_id)
        )
        if exists.scalar_one_or_none() is not None:
            await self.db.rollback()
            raise Conflict()

        self.db.add(TwoFactorRecord(user_id=user_id, version=1, updated_at=now,
                                    **{"is_enabled": False, **values}))
        try:
            await self.db.flush()
        except IntegrityError:
            # otra pestaña insertó primero: pisamos su fila
            await self.db.rollback()
            if not await self._update_unless_enabled(user_id, values, now):
                raise Conflict()

    async def _update_unless_enabled(self, user_id: str, values: dict[str, Any], now: datetime) -> bool:
        res = await self.db.execute(
            update(TwoFactorRecord)
            .where(TwoFactorRecord.user_id == user_id, TwoFactorRecord.is_enabled.is_(False))
            .values(**values, version=TwoFactorRecord.version + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1

    async def consume_backup_code(self, user_id: str, code: str, at: datetime) -> bool:
        """Marca como usado el primer código que matchee. False si ninguno."""
        self._authorize(user_id)

        async def _consume():
            res = await self.db.execute(
                select(RecoveryCode.id, RecoveryCode.code_hash)
                .where(RecoveryCode.user_id == user_id, RecoveryCode.used.is_(False))
            )
            for code_id, code_hash in res.all():
                if not verify_backup_code(code, code_hash):
                    continue
                upd = await self.db.execute(
                    update(RecoveryCode)
                    .where(RecoveryCode.id == code_id, RecoveryCode.used.is_(False))
                    .values(used=True, used_at=at)
                    .execution_options(synchronize_session=False)
                )
                if upd.rowcount != 1:
                    # lo consumió otra sesión
                    await self.db.rollback()
                    return False
                await self.db.execute(
                    update(TwoFactorRecord)
                    .where(TwoFactorRecord.user_id == user_id)
                    .values(last_used_at=at)
                    .execution_options(synchronize_session=False)
                )
                await self.db.commit()
                return True
            return False

        return await self._run("consume_backup_code", _consume)

    async def accept_totp_step(self, user_id: str, step: int, at: datetime) -> bool:
        """
        Registra `step` como último paso TOTP usado, solo si es posterior al
        anterior. False = el código ya se usó (replay).
        """
        self._authorize(user_id)

        async def _accept():
            res = await self.db.execute(
                update(TwoFactorRecord)
                .where(
                    TwoFactorRecord.user_id == user_id,
                    TwoFactorRecord.is_enabled.is_(True),
                    or_(TwoFactorRecord.last_totp_step.is_(None), TwoFactorRecord.last_totp_step < step),
                )
                .values(last_totp_step=step, last_used_at=at)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                await self.db.rollback()
                return False
            await self.db.commit()
            return True

        return await self._run("accept_totp_step", _accept)
