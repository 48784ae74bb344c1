from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Path, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from src.surveyors_api.auth_utils import InvalidToken, TokenExpired, verify_token
from src.surveyors_api.config import Settings
from src.surveyors_api.db import Database
from src.surveyors_api.errors import AppError, ErrorKind
from src.surveyors_api.profiles import ProfileService
from src.surveyors_api.records import SURVEYORS, RecordStore

_bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Identity:
    id: Optional[int]
    email: str


# PUBLIC_INTERFACE
def get_settings_dep(request: Request) -> Settings:
    """Settings the running app was built with."""
    return request.app.state.settings


# PUBLIC_INTERFACE
def get_database(request: Request) -> Database:
    """The process-wide database handle opened at startup."""
    database = request.app.state.database
    if database is None:
        raise AppError(ErrorKind.SERVICE_UNAVAILABLE, "Database is not initialised", code="DATABASE_CONNECTION_ERROR")
    return database


# PUBLIC_INTERFACE
def get_profile_service(
    database: Database = Depends(get_database),
    settings: Settings = Depends(get_settings_dep),
) -> ProfileService:
    return ProfileService(database, settings)


# PUBLIC_INTERFACE
def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    database: Database = Depends(get_database),
    settings: Settings = Depends(get_settings_dep),
) -> Identity:
    """Resolve the bearer token to the surveyor it was issued for."""
    if credentials is None:
        raise AppError(ErrorKind.UNAUTHORIZED, "Access token required", code="MISSING_TOKEN")

    try:
        claims = verify_token(credentials.credentials, settings)
    except TokenExpired:
        raise AppError(ErrorKind.UNAUTHORIZED, "Token expired", code="TOKEN_EXPIRED")
    except InvalidToken:
        raise AppError(ErrorKind.FORBIDDEN, "Invalid token", code="INVALID_TOKEN")

    user = RecordStore(database).find_by_id(SURVEYORS, claims.user_id, columns=("id", "email"))
    if user is None:
        raise AppError(ErrorKind.UNAUTHORIZED, "User not found", code="USER_NOT_FOUND")
    return Identity(id=user["id"], email=user["email"])


# PUBLIC_INTERFACE
def require_owner(
    user_id: int = Path(..., ge=1, description="Surveyor id"),
    identity: Identity = Depends(get_current_identity),
) -> Identity:
    """Only the surveyor named in the path may touch the resource."""
    if identity.id is None or identity.id != user_id:
        raise AppError(
            ErrorKind.FORBIDDEN,
            "Access denied: You can only access your own resources",
            code="ACCESS_DENIED",
        )
    return identity
