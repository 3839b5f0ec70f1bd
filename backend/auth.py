# backend/auth.py
import os
from datetime import datetime, timedelta, timezone
from typing import cast
from dotenv import load_dotenv
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from authlib.integrations.starlette_client import OAuth
from jose import JWTError, jwt
from sqlmodel import select
from sqlalchemy.ext.asyncio import AsyncSession
from models import User, utcnow
from database import get_session

load_dotenv()

SPOTIFY_SCOPES = "user-read-email user-top-read user-read-private"

oauth = OAuth()
SPOTIFY_CLIENT_ID = os.getenv("SPOTIFY_CLIENT_ID")
SPOTIFY_CLIENT_SECRET = os.getenv("SPOTIFY_CLIENT_SECRET")
if not SPOTIFY_CLIENT_ID or not SPOTIFY_CLIENT_SECRET:
    raise ValueError("Spotify OAuth credentials are not set in .env file.")
oauth.register(
    name='spotify', client_id=SPOTIFY_CLIENT_ID, client_secret=SPOTIFY_CLIENT_SECRET,
    authorize_url='https://accounts.spotify.com/authorize',
    access_token_url='https://accounts.spotify.com/api/token',
    api_base_url='https://api.spotify.com/v1/',
    client_kwargs={'scope': SPOTIFY_SCOPES}
)

JWT_SECRET = os.getenv("JWT_SECRET")
if not JWT_SECRET: raise ValueError("JWT_SECRET is not set in .env file!")
safe_jwt_secret: str = cast(str, JWT_SECRET)
ALGORITHM = "HS256"
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")

def create_access_token(data: dict) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(days=3)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, safe_jwt_secret, algorithm=ALGORITHM)

def _pick_avatar(profile: dict):
    images = profile.get('images') or []
    return images[0].get('url') if images else None

async def find_or_create_user(session: AsyncSession, profile: dict, token: dict) -> User:
    """Upserts the signed-in Spotify account; the refresh credential is replaced on every sign-in."""
    spotify_id = profile.get('id')
    if not spotify_id: raise HTTPException(status_code=400, detail="Invalid user info from Spotify")

    statement = select(User).where(User.spotifyId == spotify_id)
    result = await session.execute(statement)
    db_user = result.scalar_one_or_none()

    expires_at = utcnow() + timedelta(seconds=token.get('expires_in', 3600))

    if db_user:
        db_user.displayName = profile.get('display_name') or db_user.displayName
        db_user.avatarUrl = _pick_avatar(profile) or db_user.avatarUrl
        db_user.oauth_access_token = token.get('access_token')
        if token.get('refresh_token'):
            db_user.oauth_refresh_token = token.get('refresh_token')
        db_user.oauth_token_expiry = expires_at
    else:
        email = profile.get('email')
        if not email: raise HTTPException(status_code=400, detail="Spotify account has no email address")
        db_user = User(
            spotifyId=spotify_id, email=email, displayName=profile.get('display_name'),
            avatarUrl=_pick_avatar(profile), oauth_access_token=token.get('access_token'),
            oauth_refresh_token=token.get('refresh_token'), oauth_token_expiry=expires_at
        )
    session.add(db_user)
    await session.commit()
    await session.refresh(db_user)
    return db_user

async def get_current_user(token: str = Depends(oauth2_scheme), session: AsyncSession = Depends(get_session)) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, safe_jwt_secret, algorithms=[ALGORITHM])
        user_id_str = payload.get("sub")
        if user_id_str is None: raise credentials_exception
        user_id = int(user_id_str)
    except (JWTError, ValueError):
        raise credentials_exception

    user = await session.get(User, user_id)
    if user is None: raise HTTPException(status_code=404, detail="User not found")
    return user
