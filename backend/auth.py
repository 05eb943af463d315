# backend/auth.py
import time
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from authlib.integrations.starlette_client import OAuth
from jose import JWTError, jwt
from sqlmodel import select
from sqlalchemy.ext.asyncio import AsyncSession

import settings
from database import get_session
from errors import Unauthorized, ValidationFailed
from models import Account, User

logger = logging.getLogger(__name__)

oauth = OAuth()
oauth.register(
    name='google', client_id=settings.GOOGLE_CLIENT_ID, client_secret=settings.GOOGLE_CLIENT_SECRET,
    server_metadata_url='https://accounts.google.com/.well-known/openid-configuration',
    client_kwargs={'scope': ' '.join(settings.GOOGLE_SCOPES)},
    authorize_params={'access_type': 'offline'},
)

ALGORITHM = "HS256"
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/signin", auto_error=False)

def create_session_token(data: dict) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(days=settings.SESSION_TTL_DAYS)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SESSION_SECRET, algorithm=ALGORITHM)

def decode_session_token(token: str) -> Optional[int]:
    try:
        payload = jwt.decode(token, settings.SESSION_SECRET, algorithms=[ALGORITHM])
    except JWTError:
        return None
    user_id_str = payload.get("sub")
    if user_id_str is None or not str(user_id_str).isdigit():
        return None
    return int(user_id_str)

async def find_or_create_user(session: AsyncSession, user_info: dict, token: dict) -> User:
    """Upserts the user and the stored Google credential from an OAuth callback."""
    google_id = user_info.get('sub')
    email = user_info.get('email')
    if not google_id or not email:
        raise ValidationFailed("Invalid user info from Google")

    result = await session.execute(select(User).where(User.email == email))
    db_user = result.scalar_one_or_none()
    if db_user:
        db_user.name = user_info.get('name')
        db_user.image = user_info.get('picture')
    else:
        db_user = User(email=email, name=user_info.get('name'), image=user_info.get('picture'))
    session.add(db_user)
    await session.flush()

    result = await session.execute(
        select(Account).where(Account.userId == db_user.id, Account.provider == "google")
    )
    account = result.scalar_one_or_none()
    expires_at = token.get('expires_at')
    if expires_at is None:
        expires_at = int(time.time()) + int(token.get('expires_in', 3600))

    if account:
        account.providerAccountId = google_id
        account.access_token = token.get('access_token')
        # Google only returns a refresh token on consent, keep the previous one otherwise
        if token.get('refresh_token'):
            account.refresh_token = token.get('refresh_token')
        account.expires_at = int(expires_at)
        account.scope = token.get('scope')
    else:
        account = Account(
            userId=db_user.id, provider="google", providerAccountId=google_id,
            access_token=token.get('access_token'), refresh_token=token.get('refresh_token'),
            expires_at=int(expires_at), scope=token.get('scope'),
        )
    session.add(account)
    await session.commit()
    await session.refresh(db_user)
    logger.info("Signed in user %s", db_user.id)
    return db_user

async def get_optional_user(
    request: Request,
    bearer: Optional[str] = Depends(oauth2_scheme),
    session: AsyncSession = Depends(get_session),
) -> Optional[User]:
    token = request.cookies.get(settings.SESSION_COOKIE_NAME) or bearer
    if not token:
        return None
    user_id = decode_session_token(token)
    if user_id is None:
        return None
    return await session.get(User, user_id)

async def get_current_user(user: Optional[User] = Depends(get_optional_user)) -> User:
    if user is None:
        raise Unauthorized("Not authenticated. Please sign in with Google.")
    return user
