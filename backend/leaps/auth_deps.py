from __future__ import annotations
import uuid
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt
from leaps.access import AccessContext
from leaps.models.user import Role
from leaps.security import decode_token

security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)

def _context_from_token(token: str) -> AccessContext:
    try:
        data = decode_token(token)
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    if data.get("type") != "access":
        raise HTTPException(status_code=401, detail="Wrong token type")
    try:
        return AccessContext(
            user_id=uuid.UUID(str(data.get("sub"))),
            role=Role(data.get("role")),
            cohort=data.get("cohort") or None,
            school=data.get("school") or None,
        )
    except ValueError:
        raise HTTPException(status_code=401, detail="Malformed token claims")

async def get_access_context(credentials: HTTPAuthorizationCredentials = Depends(security)) -> AccessContext:
    return _context_from_token(credentials.credentials)

async def get_optional_context(
    credentials: HTTPAuthorizationCredentials | None = Depends(optional_security),
) -> AccessContext | None:
    if credentials is None:
        return None
    return _context_from_token(credentials.credentials)
