# backend/services/token_service.py
import time
import logging
from datetime import timezone
from typing import NamedTuple, Optional
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request as GoogleRequest
from google.oauth2.credentials import Credentials
from sqlmodel import select
from sqlalchemy.ext.asyncio import AsyncSession

import settings
from errors import ReauthRequired, RefreshFailed
from models import Account

logger = logging.getLogger(__name__)

REFRESH_HORIZON_SECONDS = 300

class AccessToken(NamedTuple):
    token: str
    expires_at: Optional[int]
    refreshed: bool

async def get_account(session: AsyncSession, user_id: int, provider: str = "google") -> Optional[Account]:
    result = await session.execute(
        select(Account).where(Account.userId == user_id, Account.provider == provider)
    )
    return result.scalars().first()

def token_state(account: Account, now: int):
    """Returns (is_expired, expires_soon); an unset expiry counts as expired."""
    expires_at = account.expires_at or 0
    return expires_at < now, expires_at < now + REFRESH_HORIZON_SECONDS

def exchange_refresh_token(refresh_token: str) -> dict:
    """Runs a single refresh exchange against Google's token endpoint."""
    creds = Credentials(
        token=None, refresh_token=refresh_token,
        token_uri=settings.GOOGLE_TOKEN_URI,
        client_id=settings.GOOGLE_CLIENT_ID,
        client_secret=settings.GOOGLE_CLIENT_SECRET,
    )
    creds.refresh(GoogleRequest())
    expires_at = None
    if creds.expiry:
        expires_at = int(creds.expiry.replace(tzinfo=timezone.utc).timestamp())
    return {
        "access_token": creds.token,
        "expires_at": expires_at,
        "refresh_token": creds.refresh_token,
    }

async def get_valid_access_token(session: AsyncSession, account: Optional[Account], now: Optional[int] = None) -> AccessToken:
    if account is None or not account.access_token:
        raise ReauthRequired("No Google account found. Please sign out and sign in again with Google.")

    now = int(time.time()) if now is None else now
    is_expired, expires_soon = token_state(account, now)

    if (is_expired or expires_soon) and account.refresh_token:
        try:
            grant = exchange_refresh_token(account.refresh_token)
        except GoogleAuthError as e:
            logger.error("Token refresh failed for user %s: %s", account.userId, e)
            raise RefreshFailed(
                "Token expired and refresh failed. Please sign out and sign in again.",
                details=str(e),
            )
        account.access_token = grant["access_token"]
        account.expires_at = grant.get("expires_at")
        account.refresh_token = grant.get("refresh_token") or account.refresh_token
        session.add(account)
        await session.commit()
        await session.refresh(account)
        logger.info("Refreshed Google access token for user %s", account.userId)
        return AccessToken(account.access_token, account.expires_at, True)

    if is_expired:
        raise ReauthRequired("Google access expired. Please sign in again.")

    return AccessToken(account.access_token, account.expires_at, False)

async def access_token_for_user(session: AsyncSession, user_id: int) -> str:
    account = await get_account(session, user_id)
    return (await get_valid_access_token(session, account)).token
