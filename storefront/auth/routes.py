from datetime import datetime
import logging
from fastapi import APIRouter, Depends, Request
from pymongo.errors import DuplicateKeyError

from storefront.shared.utils import (
    get_db, get_password_hash, verify_password, create_access_token,
    create_refresh_token, verify_refresh_token, SuccessResponse,
    UnauthorizedException, ConflictException, NotFoundException, str_to_oid,
)
from storefront.shared.security_config import limiter
from storefront.auth.dependencies import get_current_user
from storefront.auth.schemas import UserRegister, UserLogin, Token, UserResponse, RefreshTokenRequest
from storefront.auth.models import UserDB

logger = logging.getLogger("storefront.auth")

router = APIRouter(prefix="/auth", tags=["auth"])


def _issue_tokens(user: dict) -> Token:
    claims = {"sub": str(user["_id"]), "role": user["role"]}
    return Token(
        access_token=create_access_token(data=claims),
        refresh_token=create_refresh_token(data=claims),
        token_type="bearer"
    )


async def _revoke(db, payload: dict):
    if "jti" in payload:
        await db.revoked_tokens.update_one(
            {"jti": payload["jti"]},
            {"$set": {"jti": payload["jti"], "exp": datetime.utcfromtimestamp(payload["exp"])}},
            upsert=True
        )


@router.post("/register", response_model=SuccessResponse[UserResponse], status_code=201)
async def register(user: UserRegister, request: Request):
    db = get_db(request)
    existing_user = await db.users.find_one({"email": user.email})
    if existing_user:
        raise ConflictException("Email already registered")

    user_db = UserDB(
        email=user.email,
        password_hash=get_password_hash(user.password),
        name=user.name,
        phone=user.phone,
    )
    try:
        new_user = await db.users.insert_one(user_db.dict(by_alias=True, exclude={"id"}))
    except DuplicateKeyError:
        raise ConflictException("Email already registered")

    created_user = await db.users.find_one({"_id": new_user.inserted_id})
    created_user["id"] = str(created_user["_id"])
    logger.info("User registered", extra={"user_id": created_user["id"]})

    return SuccessResponse(data=UserResponse(**created_user), message="User registered successfully")


@router.post("/login", response_model=SuccessResponse[Token])
@limiter.limit("5/minute")
async def login(user_credentials: UserLogin, request: Request):
    db = get_db(request)
    user = await db.users.find_one({"email": user_credentials.email})
    if not user or not verify_password(user_credentials.password, user["password_hash"]):
        raise UnauthorizedException("Incorrect email or password")
    if not user.get("is_active", True):
        raise UnauthorizedException("Account is deactivated")

    await db.users.update_one({"_id": user["_id"]}, {"$set": {"last_login": datetime.utcnow()}})
    return SuccessResponse(data=_issue_tokens(user), message="Login successful")


@router.post("/refresh", response_model=SuccessResponse[Token])
async def refresh_token(body: RefreshTokenRequest, request: Request):
    db = get_db(request)
    payload = verify_refresh_token(body.refresh_token)
    if "jti" in payload:
        is_revoked = await db.revoked_tokens.find_one({"jti": payload["jti"]})
        if is_revoked:
            raise UnauthorizedException("Refresh token has been revoked")

    user = await db.users.find_one({"_id": _user_oid(payload)})
    if not user or not user.get("is_active", True):
        raise UnauthorizedException("User no longer exists or is inactive")

    # Rotate: the presented refresh token cannot be used twice
    await _revoke(db, payload)
    return SuccessResponse(data=_issue_tokens(user))


@router.post("/logout", response_model=SuccessResponse[dict])
async def logout(body: RefreshTokenRequest, request: Request, user: dict = Depends(get_current_user)):
    db = get_db(request)
    await _revoke(db, request.state.token_payload)
    await _revoke(db, verify_refresh_token(body.refresh_token))
    return SuccessResponse(message="Logged out successfully")


@router.get("/me", response_model=SuccessResponse[UserResponse])
async def me(user: dict = Depends(get_current_user)):
    return SuccessResponse(data=UserResponse(**user))


def _user_oid(payload: dict):
    try:
        return str_to_oid(payload.get("sub"), "User")
    except NotFoundException:
        raise UnauthorizedException("Invalid refresh token")
