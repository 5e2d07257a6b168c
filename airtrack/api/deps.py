"""Shared API dependencies."""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlmodel import Session, select

from airtrack.database import get_session
from airtrack.engine.store import PositionStore, get_position_store
from airtrack.models.user import User
from airtrack.services.auth import decode_access_token
from airtrack.services.broadcaster import Broadcaster, get_broadcaster
from airtrack.services.market_data import QuoteSource, get_quote_source

bearer_scheme = HTTPBearer()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    session: Session = Depends(get_session),
) -> User:
    """Validate the JWT and return the admin it belongs to."""
    username = decode_access_token(credentials.credentials)
    if username is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    user = session.exec(select(User).where(User.username == username)).first()
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user


def get_store() -> PositionStore:
    return get_position_store()


def get_trade_broadcaster() -> Broadcaster:
    return get_broadcaster()


def get_quotes() -> QuoteSource:
    return get_quote_source()
