# calmora/services/twofa_service.py
"""
Ciclo de vida 2FA: disabled -> pending_verification -> enabled -> disabled.

El estado se deriva siempre del registro persistido (TwoFactorStore); el
servicio no guarda nada entre llamadas. Las transiciones que salen de un
estado ya validado escriben con compare-and-set (estado + versión leídos),
así dos pestañas no pueden pisarse: la segunda recibe Conflict.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from calmora.core.errors import InvalidState, VerificationFailed
from calmora.core.security import (
    generate_2fa_secret, totp_uri_from_secret, match_totp_step,
    generate_backup_codes, hash_backup_code, qr_png_base64_from_text,
)
from calmora.models.two_factor import TwoFactorState
from calmora.services.twofa_store import TwoFactorStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TwoFactorStatus:
    state: TwoFactorState
    backup_codes_remaining: int = 0
    enabled_at: datetime | None = None

    @property
    def is_enabled(self) -> bool:
        return self.state == TwoFactorState.enabled


@dataclass(frozen=True, slots=True)
class EnrollmentStart:
    secret: str
    otpauth_url: str
    qr_base64_png: str | None = None
    state: TwoFactorState = TwoFactorState.pending_verification


@dataclass(frozen=True, slots=True)
class EnrollmentResult:
    backup_codes: list[str] = field(default_factory=list)
    state: TwoFactorState = TwoFactorState.enabled


class TwoFactorService:
    def __init__(self, store: TwoFactorStore):
        self.store = store

    async def check_status(self, user_id: str) -> TwoFactorStatus:
        snap = await self.store.get_record(user_id)
        if snap is None:
            return TwoFactorStatus(state=TwoFactorState.disabled)
        remaining = 0
        if snap.state == TwoFactorState.enabled:
            remaining = await self.store.count_backup_codes(user_id)
        return TwoFactorStatus(state=snap.state, backup_codes_remaining=remaining,
                               enabled_at=snap.enabled_at)

    async def start_enrollment(self, user_id: str, label: str, with_qr: bool = False) -> EnrollmentStart:
        snap = await self.store.get_record(user_id)
        current = snap.state if snap else TwoFactorState.disabled
        if current != TwoFactorState.disabled:
            raise InvalidState(f"Cannot start enrollment while 2FA is {current.value}")

        secret = generate_2fa_secret()
        # dos starts concurrentes: gana el último (todavía no protege nada)
        await self.store.upsert_record(
            user_id,
            {"secret": secret, "is_enabled": False, "enabled_at": None, "last_totp_step": None},
            backup_code_hashes=[],
        )
        logger.info("2FA enrollment started for user %s", user_id)

        otpauth = totp_uri_from_secret(secret, label=label)
        qr_b64 = qr_png_base64_from_text(otpauth) if with_qr else None
        return EnrollmentStart(secret=secret, otpauth_url=otpauth, qr_base64_png=qr_b64 or None)

    async def confirm_enrollment(self, user_id: str, otp: str, at: datetime) -> EnrollmentResult:
        """
        Verifica el primer código y habilita 2FA.

        Los backup codes se devuelven en texto plano solo acá; en la base
        quedan hasheados y no hay forma de volver a leerlos.
        """
        snap = await self.store.get_record(user_id)
        if snap is None or snap.state != TwoFactorState.pending_verification or snap.secret is None:
            raise InvalidState("No pending 2FA enrollment. Start the setup first")

        step = match_totp_step(otp, snap.secret, at)
        if step is None:
            logger.info("2FA enrollment code rejected for user %s", user_id)
            raise VerificationFailed("Invalid verification code")

        codes = generate_backup_codes()
        await self.store.upsert_record(
            user_id,
            {"is_enabled": True, "enabled_at": at, "last_totp_step": step},
            expected_state=TwoFactorState.pending_verification,
            expected_version=snap.version,
            backup_code_hashes=[hash_backup_code(c) for c in codes],
        )
        logger.info("2FA enabled for user %s", user_id)
        return EnrollmentResult(backup_codes=codes)

    async def cancel_enrollment(self, user_id: str) -> TwoFactorState:
        snap = await self.store.get_record(user_id)
        if snap is None or snap.state != TwoFactorState.pending_verification:
            raise InvalidState("No pending 2FA enrollment to cancel")
        await self.store.upsert_record(
            user_id,
            {"secret": None, "is_enabled": False},
            expected_state=TwoFactorState.pending_verification,
            expected_version=snap.version,
        )
        logger.info("2FA enrollment cancelled for user %s", user_id)
        return TwoFactorState.disabled

    async def disable(self, user_id: str) -> TwoFactorState:
        snap = await self.store.get_record(user_id)
        if snap is None or snap.state != TwoFactorState.enabled:
            raise InvalidState("Two-factor authentication is not enabled")
        # se purgan secreto y backup codes: re-habilitar exige un enrollment nuevo
        await self.store.upsert_record(
            user_id,
            {"secret": None, "is_enabled": False, "enabled_at": None, "last_totp_step": None},
            expected_state=TwoFactorState.enabled,
            expected_version=snap.version,
            backup_code_hashes=[],
        )
        logger.info("2FA disabled for user %s", user_id)
        return TwoFactorState.disabled

    async def verify_second_factor(
        self,
        user_id: str,
        at: datetime,
        otp: str | None = None,
        backup_code: str | None = None,
    ) -> bool:
        """
        Segundo factor del login.

        Devuelve False si la cuenta no tiene 2FA activo (un secreto pendiente
        no cuenta), True si el OTP o un backup code fueron aceptados.
        Cada paso TOTP sirve una sola vez (tampoco el usado para habilitar).
        """
        snap = await self.store.get_record(user_id)
        if snap is None or snap.state != TwoFactorState.enabled:
            return False
        if snap.secret is None:
            raise InvalidState("Two-factor record is enabled without a secret")

        step = match_totp_step(otp, snap.secret, at) if otp else None
        if step is not None:
            if await self.store.accept_totp_step(user_id, step, at):
                return True
            logger.info("replayed TOTP code rejected for user %s", user_id)
        if backup_code and await self.store.consume_backup_code(user_id, backup_code, at):
            logger.info("backup code consumed for user %s", user_id)
            return True
        raise VerificationFailed("Invalid two-factor code")
