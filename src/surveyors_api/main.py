import resource
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Query, status
from fastapi.middleware.cors import CORSMiddleware

from src.surveyors_api import mailer
from src.surveyors_api.config import Settings, get_settings
from src.surveyors_api.db import Database
from src.surveyors_api.dependencies import Identity, get_profile_service, get_settings_dep, require_owner
from src.surveyors_api.errors import register_error_handlers
from src.surveyors_api.logging_config import configure_logging
from src.surveyors_api.middleware import RequestLoggingMiddleware
from src.surveyors_api.profiles import ProfileService
from src.surveyors_api.schemas import (
    APIMessage,
    AreasUpdate,
    CountyPage,
    EmailRequest,
    LoginRequest,
    LoginResponse,
    PasswordChange,
    Profile,
    ProfileUpdate,
    RegistrationRequest,
    RegistrationResponse,
    ServiceCategory,
    ServicesUpdate,
)

API_VERSION = "1.0.0"

openapi_tags = [
    {"name": "Health", "description": "Service health checks."},
    {"name": "Auth", "description": "Login and token issuance."},
    {"name": "Registration", "description": "Surveyor sign-up."},
    {"name": "Profile", "description": "Owner-only profile maintenance."},
    {"name": "Reference", "description": "Counties and the service taxonomy."},
    {"name": "Email", "description": "Outbound email relay."},
]


def _lifespan(database: Optional[Database]):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = database is None
        if owned:
            app.state.database = Database.from_settings(app.state.settings)
        try:
            yield
        finally:
            if owned and app.state.database is not None:
                app.state.database.close()
                app.state.database = None

    return lifespan


# PUBLIC_INTERFACE
def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    """
    Build the API.

    When database is None the pool is opened at startup and closed at
    shutdown; a database passed in is used as-is and left open.
    """
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title="Surveyor Directory API",
        description=(
            "Registration, login and profile maintenance for the land-surveyor directory.\n\n"
            "Auth: Use the `Authorization: Bearer <token>` header for protected routes."
        ),
        version=API_VERSION,
        openapi_tags=openapi_tags,
        lifespan=_lifespan(database),
    )
    app.state.settings = settings
    app.state.database = database
    app.state.started_at = time.monotonic()

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.allowed_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app, settings)
    _register_routes(app)
    return app


def _register_routes(app: FastAPI) -> None:
    # =========================
    # Health
    # =========================

    @app.get("/", tags=["Health"], summary="Service banner")
    def root(settings: Settings = Depends(get_settings_dep)) -> Dict[str, Any]:
        """Confirms the server is running."""
        return {
            "message": "CLS Backend Server is running!",
            "version": API_VERSION,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "environment": settings.environment,
        }

    @app.get("/health", tags=["Health"], summary="Health check")
    def health_check() -> Dict[str, Any]:
        """Liveness check with process uptime and memory usage."""
        usage = resource.getrusage(resource.RUSAGE_SELF)
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(time.monotonic() - app.state.started_at, 3),
            "memory": {"maxRss": usage.ru_maxrss},
        }

    # =========================
    # Auth / registration
    # =========================

    @app.post("/api/auth/login", response_model=LoginResponse, tags=["Auth"], summary="Login")
    def login(payload: LoginRequest, profiles: ProfileService = Depends(get_profile_service)) -> LoginResponse:
        """Authenticate a surveyor and return an access token."""
        result = profiles.authenticate(payload.email, payload.password)
        return LoginResponse(user=result["user"], token=result["token"], expires_in=result["expires_in"])

    @app.post(
        "/api/registration/register-user",
        response_model=RegistrationResponse,
        status_code=status.HTTP_201_CREATED,
        tags=["Registration"],
        summary="Register a surveyor",
    )
    def register_user(
        payload: RegistrationRequest, profiles: ProfileService = Depends(get_profile_service)
    ) -> RegistrationResponse:
        """Create a surveyor account with the default service counties."""
        fields = {
            "first_name": payload.first_name,
            "last_name": payload.last_name,
            "company_name": payload.company_name or None,
            "email": payload.email,
            "phone": payload.phone,
            "address": payload.address,
            "town": payload.city,
            "state": payload.state,
            "zip_code": payload.zip_code,
        }
        user = profiles.register(fields, payload.password)
        return RegistrationResponse(user=user)

    # =========================
    # Profile (owner only)
    # =========================

    @app.get("/api/user-profile/{user_id}", response_model=Profile, tags=["Profile"], summary="Get profile")
    def get_user_profile(
        user_id: int,
        _: Identity = Depends(require_owner),
        profiles: ProfileService = Depends(get_profile_service),
    ) -> Dict[str, Any]:
        """Profile with offered services and served counties."""
        return profiles.get_profile(user_id)

    @app.put("/api/user-profile/info/{user_id}", response_model=APIMessage, tags=["Profile"], summary="Update info")
    def update_user_info(
        user_id: int,
        payload: ProfileUpdate,
        _: Identity = Depends(require_owner),
        profiles: ProfileService = Depends(get_profile_service),
    ) -> APIMessage:
        """Update the profile fields present in the body."""
        profiles.update_info(user_id, payload.to_columns())
        return APIMessage(message="User information updated successfully.")

    @app.patch(
        "/api/user-profile/password/{user_id}", response_model=APIMessage, tags=["Profile"], summary="Change password"
    )
    def change_user_password(
        user_id: int,
        payload: PasswordChange,
        _: Identity = Depends(require_owner),
        profiles: ProfileService = Depends(get_profile_service),
    ) -> APIMessage:
        profiles.change_password(user_id, payload.current_password, payload.new_password)
        return APIMessage(message="Password updated successfully.")

    @app.put(
        "/api/user-profile/services/{user_id}", response_model=APIMessage, tags=["Profile"], summary="Replace services"
    )
    def update_user_services(
        user_id: int,
        payload: ServicesUpdate,
        _: Identity = Depends(require_owner),
        profiles: ProfileService = Depends(get_profile_service),
    ) -> APIMessage:
        """Replace the offered subservices. Main services follow from the subservices chosen."""
        profiles.replace_services(user_id, payload.subservices)
        return APIMessage(message="User services updated successfully.")

    @app.put("/api/user-profile/areas/{user_id}", response_model=APIMessage, tags=["Profile"], summary="Replace areas")
    def update_user_service_areas(
        user_id: int,
        payload: AreasUpdate,
        _: Identity = Depends(require_owner),
        profiles: ProfileService = Depends(get_profile_service),
    ) -> APIMessage:
        profiles.replace_counties(user_id, payload.counties)
        return APIMessage(message="User service areas updated successfully.")

    @app.delete("/api/user-profile/{user_id}", response_model=APIMessage, tags=["Profile"], summary="Delete account")
    def delete_user(
        user_id: int,
        _: Identity = Depends(require_owner),
        profiles: ProfileService = Depends(get_profile_service),
    ) -> APIMessage:
        profiles.delete(user_id)
        return APIMessage(message="User account deleted successfully.")

    # =========================
    # Reference data
    # =========================

    @app.get("/api/reference/counties", response_model=CountyPage, tags=["Reference"], summary="List counties")
    def list_counties(
        page: int = Query(1, ge=1),
        limit: int = Query(50, ge=1, le=100),
        profiles: ProfileService = Depends(get_profile_service),
    ) -> Dict[str, Any]:
        result = profiles.list_counties(page, limit)
        meta = result.pagination
        return {
            "data": result.data,
            "pagination": {
                "page": meta.page,
                "limit": meta.limit,
                "total": meta.total,
                "totalPages": meta.total_pages,
                "hasNext": meta.has_next,
                "hasPrev": meta.has_prev,
            },
        }

    @app.get(
        "/api/reference/services", response_model=List[ServiceCategory], tags=["Reference"], summary="Service taxonomy"
    )
    def list_services(profiles: ProfileService = Depends(get_profile_service)) -> List[Dict[str, Any]]:
        """Service categories and the subservice names the services endpoint accepts."""
        return profiles.service_catalog()

    # =========================
    # Email
    # =========================

    @app.post("/api/email/send-email", response_model=APIMessage, tags=["Email"], summary="Send email")
    def send_email(payload: EmailRequest, settings: Settings = Depends(get_settings_dep)) -> APIMessage:
        mailer.send_email(settings, payload.to, payload.subject, payload.text, payload.html)
        return APIMessage(message="Email sent successfully.")


app = create_app()
