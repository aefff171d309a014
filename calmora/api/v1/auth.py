import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from calmora.core.db import get_db
from calmora.core.errors import VerificationFailed
from calmora.core.security import hash_password, verify_password, create_access_token
from calmora.models.user import User
from calmora.schemas.auth import (
    RegisterIn, LoginIn, TokenOut, UserOut, ProfileUpdate,
    TwoFAStatusOut, TwoFASetupOut, TwoFAVerifyIn, TwoFAEnableOut, TwoFAStateOut,
)
from calmora.api.deps import get_current_user, get_twofa_service
from calmora.services.twofa_service import TwoFactorService
from calmora.services.twofa_store import TwoFactorStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

@router.post("/register", response_model=UserOut, status_code=201)
async def register(payload: RegisterIn, db: AsyncSession = Depends(get_db)):
    exists = await db.execute(select(User).where(User.email == payload.email.lower()))
    if exists.scalar_one_or_none():
        raise HTTPException(status_code=400, detail="Email already registered")

    user = User(
        email=payload.email.lower(),
        full_name=payload.full_name,
        hashed_password=hash_password(payload.password),
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    logger.info("user registered: %s", user.id)
    return user

@router.post("/login", response_model=TokenOut)
async def login(payload: LoginIn, db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(User).where(User.email == payload.email.lower()))
    user = result.scalar_one_or_none()
    if not user or not verify_password(payload.password, user.hashed_password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    if not user.is_active:
        raise HTTPException(status_code=403, detail="Inactive user")

    user_id = user.id  # un rollback del store expira `user`

    # 2FA solo gatea si está habilitado (un secreto pendiente no cuenta)
    twofa = TwoFactorService(TwoFactorStore(db, identity=user_id))
    status_ = await twofa.check_status(user_id)
    if status_.is_enabled:
        if not payload.otp and not payload.backup_code:
            raise HTTPException(status_code=401, detail="Two-factor code required")
        try:
            await twofa.verify_second_factor(
                user_id, at=datetime.now(timezone.utc),
                otp=payload.otp, backup_code=payload.backup_code,
            )
        except VerificationFailed:
            raise HTTPException(status_code=401, detail="Invalid two-factor code")

    token = create_access_token(subject=user_id)
    return TokenOut(access_token=token)

# ---------- 2FA FLOW ----------
@router.get("/2fa/status", response_model=TwoFAStatusOut)
async def twofa_status(
    current_user: User = Depends(get_current_user),
    twofa: TwoFactorService = Depends(get_twofa_service),
):
    st = await twofa.check_status(current_user.id)
    return TwoFAStatusOut(
        state=st.state,
        enabled=st.is_enabled,
        backup_codes_remaining=st.backup_codes_remaining,
        enabled_at=st.enabled_at,
    )

@router.post("/2fa/setup", response_model=TwoFASetupOut)
async def twofa_setup(
    current_user: User = Depends(get_current_user),
    twofa: TwoFactorService = Depends(get_twofa_service),
):
    started = await twofa.start_enrollment(current_user.id, label=current_user.email, with_qr=True)
    return TwoFASetupOut(
        secret=started.secret,
        otpauth_url=started.otpauth_url,
        qr_base64_png=started.qr_base64_png,
        state=started.state,
    )

@router.post("/2fa/enable", response_model=TwoFAEnableOut)
async def twofa_enable(
    body: TwoFAVerifyIn,
    current_user: User = Depends(get_current_user),
    twofa: TwoFactorService = Depends(get_twofa_service),
):
    result = await twofa.confirm_enrollment(current_user.id, body.otp, at=datetime.now(timezone.utc))
    return TwoFAEnableOut(state=result.state, backup_codes=result.backup_codes)

@router.post("/2fa/cancel", response_model=TwoFAStateOut)
async def twofa_cancel(
    current_user: User = Depends(get_current_user),
    twofa: TwoFactorService = Depends(get_twofa_service),
):
    return TwoFAStateOut(state=await twofa.cancel_enrollment(current_user.id))

@router.post("/2fa/disable", response_model=TwoFAStateOut)
async def twofa_disable(
    current_user: User = Depends(get_current_user),
    twofa: TwoFactorService = Depends(get_twofa_service),
):
    return TwoFAStateOut(state=await twofa.disable(current_user.id))


@router.get("/me", response_model=UserOut)
async def me(current_user: User = Depends(get_current_user)):
    return current_user

@router.patch("/me", response_model=UserOut)
async def update_me(
    patch: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    updates = patch.model_dump(exclude_unset=True)
    if "full_name" in updates and updates["full_name"] is None:
        raise HTTPException(status_code=400, detail="full_name cannot be empty")

    res = await db.execute(select(User).where(User.id == current_user.id))
    user = res.scalar_one()
    for k, v in updates.items():
        setattr(user, k, v)
    await db.commit()
    await db.refresh(user)
    return user
