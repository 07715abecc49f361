# backend/main.py
import logging
import time
from datetime import datetime, timezone
from contextlib import asynccontextmanager
from typing import List, Literal, Optional
from fastapi import FastAPI, Depends, Request, Response, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.security import HTTPAuthorizationCredentials
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware
from starlette.middleware.cors import CORSMiddleware
from authlib.integrations.starlette_client import OAuthError
from jose import JWTError
from pydantic import AliasChoices, BaseModel, EmailStr, Field

import config
from logging_config import configure_logging
from database import create_db_and_tables, get_session
from models import User, UserRead
from auth import (
    oauth, InvalidGoogleToken, GoogleUnavailable, check_google_claims, verify_google_id_token,
    find_or_create_user, create_access_token, decode_access_token, extract_token, bearer_scheme,
    set_session_cookie, clear_session_cookie, get_current_user, get_optional_user,
)
from rate_limit import limiter, RateLimitExceeded
from services import ai_service

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(config.LOG_LEVEL)
    logger.info("Starting up and creating database tables...")
    await create_db_and_tables()
    logger.info("Startup complete.")
    yield

app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware, allow_origins=[config.CLIENT_URL], allow_credentials=True,
    allow_methods=["*"], allow_headers=["*"],
)
# Holds OAuth state between the redirect and the callback
app.add_middleware(SessionMiddleware, secret_key=config.SESSION_SECRET, https_only=config.IS_PRODUCTION)

# --- Error bodies ---
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    body = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail}
    return JSONResponse(body, status_code=exc.status_code, headers=getattr(exc, "headers", None))

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        {"error": "Invalid request", "details": jsonable_encoder(exc.errors())}, status_code=400
    )

@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("%s %s failed", request.method, request.url.path)
    return JSONResponse({"error": "Unexpected server error"}, status_code=500)

# --- Pydantic Models ---
class LoginRequest(BaseModel):
    token: Optional[str] = Field(default=None, validation_alias=AliasChoices("id_token", "credential", "idToken"))

class DevLoginRequest(BaseModel):
    sub: Optional[str] = None
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    picture: Optional[str] = None

class ChatTurn(BaseModel): role: Literal["user", "assistant"]; content: str
class GenerateRequest(BaseModel):
    prompt: Optional[str] = None
    history: List[ChatTurn] = []

class UsageInfo(BaseModel): remaining: int; limit: int
class GenerateResponse(BaseModel): text: str; usage: UsageInfo; timestamp: str
class UsageResponse(BaseModel): remaining: int; limit: int; used: int; day: str

def _client_base() -> str:
    return "" if config.CLIENT_URL == "*" else config.CLIENT_URL.rstrip("/")

def _require_dev_routes():
    if not config.DEV_ROUTES_ENABLED:
        raise HTTPException(status_code=404, detail="Not found")

def _issue_session(response: Response, user: User) -> dict:
    token = create_access_token(user)
    set_session_cookie(response, token)
    return {"user": UserRead.from_user(user), "token": token}

# --- API Routes ---
@app.get("/", response_class=PlainTextResponse)
async def read_root():
    return "OK"

@app.get("/api/ping")
async def ping():
    return {"message": config.PING_MESSAGE}

@app.post("/api/auth/login")
async def login(response: Response, body: Optional[LoginRequest] = None, session: AsyncSession = Depends(get_session)):
    id_token = body.token if body else None
    logger.debug("/api/auth/login called, id_token present: %s", bool(id_token))
    if not id_token:
        raise HTTPException(status_code=400, detail="id_token required")
    try:
        info = await run_in_threadpool(verify_google_id_token, id_token)
    except InvalidGoogleToken as e:
        raise HTTPException(status_code=401, detail={"error": e.message, "details": e.details})
    except GoogleUnavailable:
        raise HTTPException(status_code=502, detail="Could not reach Google to verify sign-in.")
    db_user = await find_or_create_user(session, info)
    logger.info("User %s signed in", db_user.id)
    return _issue_session(response, db_user)

@app.post("/api/auth/logout")
async def logout(response: Response):
    clear_session_cookie(response)
    return {"ok": True}

@app.get("/api/auth/me")
async def get_profile(current_user: Optional[User] = Depends(get_optional_user)):
    return {"user": UserRead.from_user(current_user) if current_user else None}

@app.get("/api/auth/google")
async def oauth_start(request: Request):
    client = oauth.create_client('google')
    if client is None:
        raise HTTPException(status_code=404, detail="Google OAuth is not configured")
    redirect_uri = str(request.url_for('oauth_callback'))
    return await client.authorize_redirect(request, redirect_uri)

@app.get("/api/auth/google/callback", name="oauth_callback")
async def oauth_callback(request: Request, session: AsyncSession = Depends(get_session)):
    client = oauth.create_client('google')
    if client is None:
        raise HTTPException(status_code=404, detail="Google OAuth is not configured")
    try:
        token = await client.authorize_access_token(request)
        info = check_google_claims(dict(token['userinfo']))
    except (OAuthError, InvalidGoogleToken, KeyError) as e:
        logger.error("OAuth callback failed: %r", e)
        return RedirectResponse(url=f"{_client_base()}/login?error=oauth")
    db_user = await find_or_create_user(session, info)
    redirect = RedirectResponse(url=f"{_client_base()}/tutor")
    set_session_cookie(redirect, create_access_token(db_user))
    return redirect

@app.post("/api/auth/dev-login")
async def dev_login(response: Response, body: Optional[DevLoginRequest] = None, session: AsyncSession = Depends(get_session)):
    _require_dev_routes()
    if config.DISABLE_DEV_LOGIN:
        raise HTTPException(status_code=404, detail="Not found")
    body = body or DevLoginRequest()
    info = {
        "sub": body.sub or f"dev-{int(time.time() * 1000)}",
        "name": body.name or "Dev User",
        "email": body.email or "dev@example.com",
        "picture": body.picture or "",
    }
    db_user = await find_or_create_user(session, info)
    return _issue_session(response, db_user)

@app.get("/api/auth/debug")
async def auth_debug(request: Request, bearer: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)):
    _require_dev_routes()
    token = extract_token(request, bearer)
    claims = None
    if token:
        try:
            claims = decode_access_token(token)
        except JWTError:
            claims = None
    return {"cookies": dict(request.cookies), "claims": claims}

@app.get("/api/usage", response_model=UsageResponse)
async def get_usage(current_user: User = Depends(get_current_user)):
    usage = limiter.usage(str(current_user.id))
    return UsageResponse(remaining=usage.remaining, limit=usage.limit, used=usage.used, day=usage.day)

async def get_user_within_quota(current_user: User = Depends(get_current_user)) -> User:
    # Dependencies resolve before the body is validated: 401, then 429, then 400
    try:
        limiter.check(str(current_user.id))
    except RateLimitExceeded as e:
        raise HTTPException(status_code=429, detail=str(e))
    return current_user

@app.post("/api/generate", response_model=GenerateResponse)
async def generate(body: Optional[GenerateRequest] = None, current_user: User = Depends(get_user_within_quota)):
    user_key = str(current_user.id)

    if body is None or not body.prompt or not body.prompt.strip():
        raise HTTPException(status_code=400, detail="Invalid request: 'prompt' is required.")

    history = [turn.model_dump() for turn in body.history]
    try:
        text = await ai_service.generate_tutor_reply(body.prompt, history)
    except ai_service.AIConfigurationError as e:
        logger.error("AI configuration error: %s", e)
        raise HTTPException(status_code=500, detail={"error": "AI service configuration error", "details": str(e)})
    except ai_service.AIServiceError as e:
        raise HTTPException(status_code=502, detail={"error": "AI service error. Please try again later.", "details": str(e)})

    remaining = limiter.record(user_key)
    return GenerateResponse(
        text=text,
        usage=UsageInfo(remaining=remaining, limit=limiter.limit),
        timestamp=datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
    )
