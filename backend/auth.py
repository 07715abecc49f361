# backend/auth.py
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, cast
import requests
from cachecontrol import CacheControl
from fastapi import Depends, HTTPException, Request, Response, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from authlib.integrations.starlette_client import OAuth
from google.auth import exceptions as google_exceptions
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token as google_id_token
from jose import JWTError, jwt
from sqlmodel import select
from sqlalchemy.ext.asyncio import AsyncSession

import config
from models import User
from database import get_session

logger = logging.getLogger(__name__)

GOOGLE_ISSUERS = {"accounts.google.com", "https://accounts.google.com"}
ALGORITHM = "HS256"
safe_session_secret: str = cast(str, config.SESSION_SECRET)

oauth = OAuth()
if config.GOOGLE_CLIENT_SECRET:
    oauth.register(
        name='google', client_id=config.GOOGLE_CLIENT_ID, client_secret=config.GOOGLE_CLIENT_SECRET,
        server_metadata_url='https://accounts.google.com/.well-known/openid-configuration',
        client_kwargs={'scope': 'openid email profile'}
    )

bearer_scheme = HTTPBearer(auto_error=False)
# Google cert responses carry Cache-Control, so repeat logins reuse them
_google_request = google_requests.Request(session=CacheControl(requests.Session()))


class InvalidGoogleToken(Exception):
    """Raised when a Google ID token fails verification."""

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class GoogleUnavailable(Exception):
    """Raised when Google's certificate endpoint cannot be reached."""


def check_google_claims(info: dict) -> dict:
    """Audience/issuer/subject checks shared by the ID-token and OAuth flows."""
    if info.get("aud") != config.GOOGLE_CLIENT_ID:
        logger.warning("Token audience mismatch: expected=%s received=%s", config.GOOGLE_CLIENT_ID, info.get("aud"))
        raise InvalidGoogleToken("Invalid token audience", "Token was not issued for this application")
    if info.get("iss") not in GOOGLE_ISSUERS:
        logger.warning("Invalid token issuer: %s", info.get("iss"))
        raise InvalidGoogleToken("Invalid token issuer")
    if not info.get("sub"):
        raise InvalidGoogleToken("Invalid ID token", "Token has no subject")
    return info


def verify_google_id_token(token: str) -> dict:
    """
    Verify a Google Sign-In ID token (signature, expiry, audience, issuer)
    and return its claims. Blocking: performs an HTTP fetch of Google's certs.
    """
    try:
        info = google_id_token.verify_oauth2_token(
            token, _google_request, audience=config.GOOGLE_CLIENT_ID, clock_skew_in_seconds=10
        )
    except google_exceptions.TransportError as e:
        logger.error("Could not fetch Google certificates: %s", e)
        raise GoogleUnavailable(str(e)) from e
    except (ValueError, google_exceptions.GoogleAuthError) as e:
        logger.info("Google ID token rejected: %s", e)
        raise InvalidGoogleToken("Invalid ID token", str(e)) from e
    return check_google_claims(info)


async def find_or_create_user(session: AsyncSession, info: dict) -> User:
    google_sub = info.get('sub')
    if not google_sub: raise HTTPException(status_code=400, detail="Invalid user info from Google")
    email = info.get('email')
    email_verified = str(info.get('email_verified', '')).lower() == "true"

    result = await session.execute(select(User).where(User.google_sub == google_sub))
    db_user = result.scalar_one_or_none()
    # Only a verified address may claim an existing row
    if db_user is None and email and email_verified:
        result = await session.execute(select(User).where(User.email == email))
        db_user = result.scalars().first()

    if db_user:
        db_user.google_sub = google_sub
        db_user.name = info.get('name') or db_user.name
        db_user.email = email or db_user.email
        db_user.picture = info.get('picture') or db_user.picture
    else:
        db_user = User(google_sub=google_sub, name=info.get('name'), email=email, picture=info.get('picture'))
        logger.info("Creating user for Google subject %s", google_sub)
    session.add(db_user)
    await session.commit()
    await session.refresh(db_user)
    return db_user


def create_access_token(user: User) -> str:
    now = datetime.now(timezone.utc)
    to_encode = {
        "sub": str(user.id), "google_sub": user.google_sub, "name": user.name,
        "email": user.email, "picture": user.picture,
        "iat": now, "exp": now + timedelta(days=config.SESSION_TTL_DAYS),
    }
    return jwt.encode(to_encode, safe_session_secret, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, safe_session_secret, algorithms=[ALGORITHM])


def extract_token(request: Request, bearer: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    """Bearer header wins over the session cookie."""
    if bearer and bearer.credentials:
        return bearer.credentials.strip()
    return request.cookies.get(config.SESSION_COOKIE_NAME)


def set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        config.SESSION_COOKIE_NAME, token,
        max_age=config.SESSION_TTL_DAYS * 24 * 60 * 60, path="/", httponly=True,
        secure=config.IS_PRODUCTION, samesite="none" if config.IS_PRODUCTION else "lax",
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(
        config.SESSION_COOKIE_NAME, path="/", httponly=True,
        secure=config.IS_PRODUCTION, samesite="none" if config.IS_PRODUCTION else "lax",
    )


async def _user_from_token(token: str, session: AsyncSession) -> Optional[User]:
    try:
        payload = decode_access_token(token)
        user_id = int(payload.get("sub"))
    except (JWTError, TypeError, ValueError):
        return None
    return await session.get(User, user_id)


async def get_current_user(
    request: Request, bearer: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme), session: AsyncSession = Depends(get_session)
) -> User:
    token = extract_token(request, bearer)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    user = await _user_from_token(token, session)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def get_optional_user(
    request: Request, bearer: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme), session: AsyncSession = Depends(get_session)
) -> Optional[User]:
    token = extract_token(request, bearer)
    if not token:
        return None
    return await _user_from_token(token, session)
