from typing import Optional
from fastapi import Depends, Header, Request

from storefront.shared.utils import (
    require_auth, verify_token, str_to_oid, get_db,
    UnauthorizedException, ForbiddenException, NotFoundException,
)


async def _load_user(request: Request, payload: dict) -> dict:
    db = get_db(request)
    if "jti" in payload:
        is_revoked = await db.revoked_tokens.find_one({"jti": payload["jti"]})
        if is_revoked:
            raise UnauthorizedException("Token has been revoked")

    try:
        user_oid = str_to_oid(payload.get("sub"), "User")
    except NotFoundException:
        raise UnauthorizedException("Invalid authentication credentials")

    user = await db.users.find_one({"_id": user_oid})
    if not user or not user.get("is_active", True):
        raise UnauthorizedException("User no longer exists or is inactive")

    user["id"] = str(user["_id"])
    request.state.user_id = user["id"]
    request.state.token_payload = payload
    return user


async def get_current_user(request: Request, payload: dict = Depends(require_auth)) -> dict:
    return await _load_user(request, payload)


async def get_optional_user(request: Request, authorization: Optional[str] = Header(None)) -> Optional[dict]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    try:
        return await _load_user(request, verify_token(token))
    except UnauthorizedException:
        return None


async def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if user.get("role") != "admin":
        raise ForbiddenException("Admin access required")
    return user
