"""API Dependencies - Authentication and service wiring"""
import logging
from typing import Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError

from api.schemas import TokenData
from application.services import AvailabilityService, BookingService, PropertyService, RoomService, UserService
from domain.auth import User
from infrastructure.config import Settings, get_settings
from infrastructure.database import Repositories, get_repositories
from infrastructure.security import decode_access_token

logger = logging.getLogger(__name__)

# Bookings can be placed anonymously, so a missing token is not an error here
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token", auto_error=False)


def get_booking_service(
    repos: Repositories = Depends(get_repositories),
    settings: Settings = Depends(get_settings),
) -> BookingService:
    return BookingService(repos.bookings, repos.rooms, repos.properties, repos.users, settings)


def get_availability_service(repos: Repositories = Depends(get_repositories)) -> AvailabilityService:
    return AvailabilityService(repos.bookings, repos.rooms)


def get_property_service(repos: Repositories = Depends(get_repositories)) -> PropertyService:
    return PropertyService(repos.properties, repos.rooms, repos.users)


def get_room_service(repos: Repositories = Depends(get_repositories)) -> RoomService:
    return RoomService(repos.rooms, repos.properties)


def get_user_service(repos: Repositories = Depends(get_repositories)) -> UserService:
    return UserService(repos.users)


async def get_current_actor(
    token: Optional[str] = Depends(oauth2_scheme),
    repos: Repositories = Depends(get_repositories),
) -> Optional[User]:
    """The authenticated user, or None for anonymous requests"""
    if token is None:
        return None

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_access_token(token)
        subject: str = payload.get("sub")
        if subject is None:
            raise credentials_exception
        token_data = TokenData(user_id=UUID(subject))
    except (JWTError, ValueError):
        logger.info("Rejected invalid access token")
        raise credentials_exception

    user = await repos.users.find_by_id(token_data.user_id)
    if user is None:
        raise credentials_exception
    if user.disabled:
        raise HTTPException(status_code=400, detail="Inactive user")
    return user.public()


async def get_current_active_user(actor: Optional[User] = Depends(get_current_actor)) -> User:
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return actor
