import re
import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Optional
from passlib.context import CryptContext

from jose import jwt
from calmora.core.config import settings

# --- 2FA helpers ---
import base64
from io import BytesIO
import pyotp
from pyotp.utils import strings_equal
import qrcode


pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
# los backup codes ya tienen ~51 bits de entropía; pbkdf2 alcanza y evita el límite de 72 bytes de bcrypt
code_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

BACKUP_CODE_ALPHABET = string.ascii_uppercase + string.digits
_OTP_RE = re.compile(r"[0-9]{%d}" % settings.TOTP_DIGITS)

def hash_password(plain: str) -> str:
    return pwd_context.hash(plain)

def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)

def create_access_token(
        subject: str,
        extra: Optional[dict] = None,
        expires_minutes: int | None = None
        ) -> str:
    to_encode = {"sub": subject, "iat": datetime.now(tz=timezone.utc)}
    if extra:
        to_encode.update(extra)
    expire = datetime.now(tz=timezone.utc) + timedelta(
        minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)

# --- 2FA functions ---

def generate_2fa_secret() -> str:
    # 32 chars base32 = 160 bits (secrets.choice por dentro)
    return pyotp.random_base32(length=32)

def _totp(secret: str) -> pyotp.TOTP:
    return pyotp.TOTP(secret, digits=settings.TOTP_DIGITS, interval=settings.TOTP_INTERVAL)

def totp_uri_from_secret(secret: str, label: str, issuer: str | None = None) -> str:
    return _totp(secret).provisioning_uri(name=label, issuer_name=issuer or settings.TOTP_ISSUER)

def totp_code_at(secret: str, at: datetime) -> str:
    return _totp(secret).at(at)

def match_totp_step(otp: str, secret: str, at: datetime) -> int | None:
    """
    Paso TOTP (contador) al que corresponde `otp`, buscando en el paso de `at`
    y ±TOTP_VALID_WINDOW pasos. None si no matchea.
    `at` debe venir con tzinfo; nunca se lee el reloj acá.
    """
    if not otp or not _OTP_RE.fullmatch(otp):
        return None
    if at.tzinfo is None:
        raise ValueError("verify_totp requires a timezone-aware datetime")
    totp = _totp(secret)
    base = totp.timecode(at)
    window = settings.TOTP_VALID_WINDOW
    for offset in range(-window, window + 1):
        if strings_equal(otp, totp.at(at, counter_offset=offset)):
            return base + offset
    return None

def verify_totp(otp: str, secret: str, at: datetime) -> bool:
    return match_totp_step(otp, secret, at) is not None

def generate_backup_codes(count: int | None = None, length: int = 10) -> list[str]:
    count = count or settings.BACKUP_CODE_COUNT
    codes: set[str] = set()
    while len(codes) < count:
        raw = "".join(secrets.choice(BACKUP_CODE_ALPHABET) for _ in range(length))
        codes.add(f"{raw[:length // 2]}-{raw[length // 2:]}")
    return sorted(codes)

def normalize_backup_code(code: str) -> str:
    raw = re.sub(r"[\s-]", "", code).upper()
    return f"{raw[:len(raw) // 2]}-{raw[len(raw) // 2:]}" if raw else ""

def hash_backup_code(code: str) -> str:
    return code_context.hash(normalize_backup_code(code))

def verify_backup_code(code: str, code_hash: str) -> bool:
    return code_context.verify(normalize_backup_code(code), code_hash)

# -- Opcional: QR PNG en base64 --
def qr_png_base64_from_text(text: str) -> str:
    img = qrcode.make(text)
    buf = BytesIO()
    img.save(buf, "PNG")
    return base64.b64encode(buf.getvalue()).decode("ascii")
