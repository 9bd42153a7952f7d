import logging
from dataclasses import dataclass
from typing import Optional

from jose import JWTError, jwt
from fastapi import HTTPException, Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from . import config

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
AUDIENCE = "authenticated"

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class CurrentUser:
    id: str
    email: Optional[str] = None


def decode_token(token: str) -> CurrentUser:
    """
    Verify a Supabase access token and return the user it names.

    Expired, malformed and wrongly signed tokens are all reported the same
    way; callers only ever see a 401.
    """
    secret = config.SUPABASE_JWT_SECRET or config.require("SUPABASE_JWT_SECRET")
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[ALGORITHM],
            audience=AUDIENCE,
        )
    except JWTError as e:
        logger.debug("Rejected access token: %s", e)
        raise HTTPException(status_code=401, detail="Unauthorized")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return CurrentUser(id=user_id, email=payload.get("email"))


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> CurrentUser:
    token = credentials.credentials if credentials else None
    if not token:
        # browser redirects (OAuth connect) cannot set headers
        token = request.query_params.get("token")
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return decode_token(token)
