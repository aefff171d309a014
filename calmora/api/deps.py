from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from calmora.core.config import settings
from calmora.core.db import get_db
from calmora.models.user import User
from calmora.services.twofa_service import TwoFactorService
from calmora.services.twofa_store import TwoFactorStore


bearer = HTTPBearer(auto_error=False)

async def get_current_user(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: AsyncSession = Depends(get_db),
) -> User:
    if creds is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = jwt.decode(creds.credentials, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        sub: str | None = payload.get("sub")
        if not sub:
            raise HTTPException(status_code=401, detail="Invalid token")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")

    result = await db.execute(select(User).where(User.id == sub))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    if not user.is_active:
        raise HTTPException(status_code=403, detail="Inactive user")

    # fuera de la sesión: un rollback del store 2FA no lo expira
    db.expunge(user)
    return user

# --- 2FA: el store queda atado a la identidad del token ---
async def get_twofa_service(
    current: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> TwoFactorService:
    return TwoFactorService(TwoFactorStore(db, identity=current.id))
