"""Auth endpoints: signup, login, refresh, logout, current user.

Email/password accounts with Argon2id password hashes and JWT session
tokens. The access token is returned in the body and also set as an
HttpOnly cookie, so browser clients need no token handling of their own.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from app import session_state
from app.config import get_settings
from app.db import get_session
from app.models.auth import (
    LoginRequest,
    RefreshRequest,
    RefreshToken,
    SignupRequest,
    TokenResponse,
    User,
    UserRead,
)
from app.utils.crypto import hash_password, needs_rehash, sha256_hash, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

JWT_ALGORITHM = "HS256"
ACCESS_COOKIE = "mirror_access_token"

_bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True, slots=True)
class AuthSession:
    session_id: str
    user_id: str


# --- JWT helpers ---


def _create_token(user_id: str, session_id: str, token_type: str, ttl: timedelta, **extra) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "sid": session_id,
        "type": token_type,
        "iat": now,
        "exp": now + ttl,
        **extra,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=JWT_ALGORITHM)


def _decode_token(token: str, expected_type: str) -> dict:
    """Decode and validate a JWT. Raises HTTPException 401 on failure."""
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    if payload.get("type") != expected_type:
        raise HTTPException(status_code=401, detail="Invalid token type")
    return payload


def _set_access_cookie(response: Response, access_token: str) -> None:
    settings = get_settings()
    response.set_cookie(
        ACCESS_COOKIE,
        access_token,
        max_age=settings.jwt_access_token_expire_minutes * 60,
        path="/",
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )


def _issue_tokens(user_id: str, session_id: str, db: Session, response: Response) -> TokenResponse:
    """Create access + refresh tokens, persist the refresh token hash, set the cookie."""
    settings = get_settings()
    token_id = str(uuid4())
    access_ttl = timedelta(minutes=settings.jwt_access_token_expire_minutes)
    refresh_ttl = timedelta(days=settings.jwt_refresh_token_expire_days)
    access = _create_token(user_id, session_id, "access", access_ttl)
    refresh = _create_token(user_id, session_id, "refresh", refresh_ttl, jti=token_id)

    now = datetime.now(timezone.utc)
    db.add(
        RefreshToken(
            id=token_id,
            token_hash=sha256_hash(refresh.encode("utf-8")),
            user_id=user_id,
            session_id=session_id,
            created_at=now,
            expires_at=now + refresh_ttl,
        )
    )
    db.commit()

    _set_access_cookie(response, access)
    return TokenResponse(
        access_token=access,
        refresh_token=refresh,
        expires_in=settings.jwt_access_token_expire_minutes * 60,
    )


def _start_session(user: User, db: Session, response: Response) -> TokenResponse:
    session_id = str(uuid4())
    session_state.open_session(session_id, user.id)
    return _issue_tokens(user.id, session_id, db, response)


# --- Auth dependency (shared with app.dependencies.require_auth) ---


def _get_auth_session(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> AuthSession:
    """Validate the access token from the Authorization header or the cookie.

    Raises HTTPException 401 if the token is missing, invalid, or its login
    session has been closed or has expired.
    """
    if credentials is not None:
        token = credentials.credentials
    else:
        token = request.cookies.get(ACCESS_COOKIE)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    payload = _decode_token(token, "access")
    user_id = payload.get("sub")
    session_id = payload.get("sid")
    if not user_id or not session_id:
        raise HTTPException(status_code=401, detail="Invalid token payload")
    if session_state.get_user_id(session_id) != user_id:
        raise HTTPException(status_code=401, detail="Session expired, please sign in again")
    return AuthSession(session_id=session_id, user_id=user_id)


# --- Endpoints ---


@router.post("/signup", response_model=TokenResponse, status_code=201)
async def signup(
    body: SignupRequest, response: Response, db: Session = Depends(get_session)
) -> TokenResponse:
    """Create an account and sign it in."""
    if db.exec(select(User).where(User.email == body.email)).first() is not None:
        raise HTTPException(status_code=409, detail="Email already registered")

    user = User(
        email=body.email,
        password_hash=hash_password(body.password),
        display_name=body.display_name.strip(),
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Email already registered")
    db.refresh(user)
    logger.info("Created user %s", user.id)
    return _start_session(user, db, response)


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest, response: Response, db: Session = Depends(get_session)
) -> TokenResponse:
    """Verify email/password and open a new session."""
    user = db.exec(select(User).where(User.email == body.email)).first()
    if user is None or not verify_password(user.password_hash, body.password):
        raise HTTPException(status_code=401, detail="Invalid email or password")

    if needs_rehash(user.password_hash):
        user.password_hash = hash_password(body.password)
        db.add(user)
        db.commit()

    return _start_session(user, db, response)


@router.post("/refresh", response_model=TokenResponse)
async def refresh(
    body: RefreshRequest, response: Response, db: Session = Depends(get_session)
) -> TokenResponse:
    """Exchange a valid refresh token for a new token pair."""
    payload = _decode_token(body.refresh_token, "refresh")
    user_id = payload.get("sub")
    session_id = payload.get("sid")
    token_id = payload.get("jti")
    if not user_id or not session_id or not token_id:
        raise HTTPException(status_code=401, detail="Invalid refresh token")

    provided_hash = sha256_hash(body.refresh_token.encode("utf-8"))
    db_token = db.exec(
        select(RefreshToken).where(
            RefreshToken.id == token_id,
            RefreshToken.token_hash == provided_hash,
        )
    ).first()

    if db_token is None:
        raise HTTPException(status_code=401, detail="Invalid refresh token")
    if db_token.revoked:
        raise HTTPException(status_code=401, detail="Refresh token revoked")
    if db_token.expires_at.replace(tzinfo=timezone.utc) < datetime.now(timezone.utc):
        raise HTTPException(status_code=401, detail="Refresh token expired")

    if session_state.get_user_id(session_id) != user_id:
        raise HTTPException(status_code=401, detail="Session expired, please sign in again")

    # Rotation: the presented token can't be used again
    db_token.revoked = True
    db.add(db_token)
    db.commit()

    return _issue_tokens(user_id, session_id, db, response)


@router.post("/logout", status_code=200)
async def logout(
    response: Response,
    auth: AuthSession = Depends(_get_auth_session),
    db: Session = Depends(get_session),
) -> dict:
    """Close the session, revoke its refresh tokens, clear the cookie."""
    session_state.close_session(auth.session_id)

    tokens = db.exec(
        select(RefreshToken).where(
            RefreshToken.session_id == auth.session_id,
            RefreshToken.revoked == False,  # noqa: E712
        )
    ).all()
    for token in tokens:
        token.revoked = True
        db.add(token)
    db.commit()

    response.delete_cookie(ACCESS_COOKIE, path="/")
    return {"detail": "Logged out"}


@router.get("/me", response_model=UserRead)
async def me(
    auth: AuthSession = Depends(_get_auth_session),
    db: Session = Depends(get_session),
) -> User:
    user = db.get(User, auth.user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="Account no longer exists")
    return user
