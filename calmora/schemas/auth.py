from datetime import date, datetime
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from calmora.core.config import settings
from calmora.models.two_factor import TwoFactorState

OTP_PATTERN = r"^[0-9]{%d}$" % settings.TOTP_DIGITS

class RegisterIn(BaseModel):
    full_name: str = Field(..., min_length=2)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=72)

class LoginIn(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)
    otp: str | None = None           # requerido si 2FA activo (o backup_code)
    backup_code: str | None = None

class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"

class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    full_name: str
    email: EmailStr
    is_active: bool
    bio: str | None = None
    location: str | None = None
    phone: str | None = None
    website: str | None = None
    birthday: date | None = None

class ProfileUpdate(BaseModel):
    full_name: str | None = Field(None, min_length=2, max_length=255)
    bio: str | None = Field(None, max_length=2000)
    location: str | None = Field(None, max_length=255)
    phone: str | None = Field(None, max_length=32)
    website: str | None = Field(None, max_length=255)
    birthday: date | None = None

# --- 2FA ---
class TwoFAStatusOut(BaseModel):
    state: TwoFactorState
    enabled: bool
    backup_codes_remaining: int = 0
    enabled_at: datetime | None = None

class TwoFASetupOut(BaseModel):
    secret: str
    otpauth_url: str
    qr_base64_png: str | None = None
    state: TwoFactorState = TwoFactorState.pending_verification

class TwoFAVerifyIn(BaseModel):
    otp: str = Field(..., pattern=OTP_PATTERN)

class TwoFAEnableOut(BaseModel):
    state: TwoFactorState = TwoFactorState.enabled
    # se muestran una única vez
    backup_codes: list[str]

class TwoFAStateOut(BaseModel):
    state: TwoFactorState
