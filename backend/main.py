# backend/main.py
import os
import logging
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.middleware.sessions import SessionMiddleware
from starlette.middleware.cors import CORSMiddleware

import settings
from auth import oauth, create_session_token, find_or_create_user, get_current_user
from database import create_db_and_tables, get_session
from errors import AppError
from models import User
from routes import config, drive, export, forms, submissions, uploads

logging.basicConfig(level=settings.LOG_LEVEL, format="%(levelname)s:     %(name)s: %(message)s")
logger = logging.getLogger(__name__)

DEFAULT_CALLBACK_PATH = "/admin/dashboard"

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting up and creating database tables...")
    await create_db_and_tables()
    logger.info("Startup complete.")
    yield

app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware, allow_origins=[settings.CLIENT_URL], allow_credentials=True,
    allow_methods=["*"], allow_headers=["*"],
)
app.add_middleware(SessionMiddleware, secret_key=settings.SESSION_SECRET)

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.details)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        problems.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return JSONResponse(status_code=400, content={"error": "Invalid request", "details": "; ".join(problems)})

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("%s %s failed with an unexpected error", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})

class UploadedFiles(StaticFiles):
    """Serves submitted files without letting the browser run them as pages."""

    def file_response(self, *args, **kwargs):
        response = super().file_response(*args, **kwargs)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Content-Security-Policy"] = "sandbox; default-src 'none'; img-src 'self'; style-src 'unsafe-inline'"
        return response

def _safe_callback(callback_url: Optional[str]) -> str:
    if callback_url and callback_url.startswith("/") and not callback_url.startswith("//"):
        return callback_url
    return DEFAULT_CALLBACK_PATH

# --- Auth Routes ---
@app.get("/api/auth/signin")
async def signin(request: Request, mode: str = "signin", callbackUrl: Optional[str] = None):
    request.session["callbackUrl"] = _safe_callback(callbackUrl)
    redirect_uri = request.url_for("auth_callback")
    # consent forces Google to issue a refresh token on sign-up
    prompt = "consent" if mode == "signup" else "select_account"
    return await oauth.google.authorize_redirect(request, redirect_uri, prompt=prompt)

@app.get("/api/auth/callback/google", name="auth_callback")
async def auth_callback(request: Request, session: AsyncSession = Depends(get_session)):
    try:
        token = await oauth.google.authorize_access_token(request)
        user_info = token.get("userinfo") or await oauth.google.userinfo(token=token)
        db_user = await find_or_create_user(session, dict(user_info), token)
    except Exception as e:
        logger.exception("Error during auth callback: %s", e)
        return RedirectResponse(url=f"{settings.CLIENT_URL}/admin/login?error=OAuthCallback")

    callback_path = _safe_callback(request.session.pop("callbackUrl", None))
    response = RedirectResponse(url=f"{settings.CLIENT_URL}{callback_path}")
    response.set_cookie(
        settings.SESSION_COOKIE_NAME, create_session_token({"sub": str(db_user.id)}),
        max_age=settings.SESSION_TTL_DAYS * 24 * 3600, httponly=True, samesite="lax",
        secure=settings.COOKIE_SECURE, path="/",
    )
    return response

@app.post("/api/auth/signout")
async def signout():
    response = JSONResponse({"success": True})
    response.delete_cookie(settings.SESSION_COOKIE_NAME, path="/")
    return response

@app.get("/api/me", response_model=User)
async def get_profile(current_user: User = Depends(get_current_user)):
    return current_user

app.include_router(drive.router)
app.include_router(export.router)
app.include_router(forms.router)
app.include_router(submissions.router)
app.include_router(uploads.router)
app.include_router(config.router)

app.mount("/uploads", UploadedFiles(directory=os.path.join(settings.PUBLIC_DIR, "uploads"), check_dir=False), name="uploads")
app.mount("/logos", UploadedFiles(directory=os.path.join(settings.PUBLIC_DIR, "logos"), check_dir=False), name="logos")

@app.get("/")
async def read_root():
    return {"message": "File Uploader Pro backend is running!"}
