from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from .settings import settings

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token", auto_error=False)


@dataclass(frozen=True)
class StaffIdentity:
    email: str
    tenant_id: int
    role: str | None = None


async def get_token_from_cookie(
    request: Request,
    token: Annotated[str | None, Depends(oauth2_scheme)]
) -> str:
    """
    Get token from cookie (primary) or Authorization header (fallback).
    """
    cookie_token = request.cookies.get("access_token")
    if cookie_token:
        return cookie_token
    if token:
        return token
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
    )


async def get_current_staff(
    token: Annotated[str, Depends(get_token_from_cookie)],
) -> StaffIdentity:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
    )
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        raise credentials_exception

    email: str | None = payload.get("sub")
    tenant_id: int | None = payload.get("tenant_id")
    if email is None or tenant_id is None:
        raise credentials_exception

    # A service bound to one tenant only serves that tenant's staff
    if settings.tenant_id is not None and tenant_id != settings.tenant_id:
        raise credentials_exception

    return StaffIdentity(email=email, tenant_id=tenant_id, role=payload.get("role"))
