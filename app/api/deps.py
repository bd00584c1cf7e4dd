# app/api/deps.py
from typing import Generator
from fastapi import Depends, HTTPException, status, Security
from fastapi.security import OAuth2PasswordBearer, APIKeyHeader
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from app.core.config import settings
from app.schemas.token import TokenPayload
from app.db.session import SessionLocal
from app.services.calendar_client import Calendar, HttpCalendarClient
from app.services.notifier import Notifier, WaitlistNotifier
from app.services.waitlist_services import WaitlistServices, build_waitlist_services


def get_db() -> Generator:
    """Dependency to get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# The `tokenUrl` doesn't have to be a real endpoint in this service,
# it's just for the OpenAPI documentation.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")


def get_current_user(token: str = Depends(oauth2_scheme)) -> TokenPayload:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=["HS256"])
        token_data = TokenPayload(**payload)
    except (JWTError, ValueError):
        # Catches any error from jose or Pydantic validation
        raise credentials_exception

    return token_data


def require_salon_access(salon_id: str, current_user: TokenPayload) -> None:
    """Staff tokens only reach their own salon."""
    if current_user.org_id != salon_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized for this salon",
        )


# Define the header we expect the key to be in
api_key_header = APIKeyHeader(name="X-Internal-Api-Key", auto_error=False)


def get_internal_api_key(api_key: str = Security(api_key_header)) -> str:
    """
    Checks for and validates the internal API key from the request header.
    """
    if api_key == settings.INTERNAL_API_KEY:
        return api_key
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or missing Internal API Key",
    )


def get_calendar() -> Calendar:
    return HttpCalendarClient()


def get_notifier() -> Notifier:
    return WaitlistNotifier()


def get_waitlist_services(
    db: Session = Depends(get_db),
    calendar: Calendar = Depends(get_calendar),
    notifier: Notifier = Depends(get_notifier),
) -> WaitlistServices:
    return build_waitlist_services(db, calendar=calendar, notifier=notifier)


def get_session_factory():
    """Session factory for work that outlives the request (background tasks)."""
    return SessionLocal
