import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, ValidationInfo, field_validator, model_validator
from pydantic.alias_generators import to_camel

_PHONE_RE = re.compile(r"^\+?[0-9][0-9 ().\-]{6,19}$")

# API field name -> surveyors column.
PROFILE_COLUMNS: Dict[str, str] = {
    "first_name": "first_name",
    "last_name": "last_name",
    "company_name": "company_name",
    "email": "email",
    "phone": "phone",
    "address": "address",
    "city": "town",
    "state": "state",
    "zip_code": "zip_code",
}


def _check_password_strength(value: str) -> str:
    if not (re.search(r"[a-z]", value) and re.search(r"[A-Z]", value) and re.search(r"\d", value)):
        raise ValueError(
            "Password must contain at least one lowercase letter, one uppercase letter, and one number"
        )
    return value


def _check_phone(value: Optional[str]) -> Optional[str]:
    if value is not None and not _PHONE_RE.match(value):
        raise ValueError("Please provide a valid phone number")
    return value


class CamelModel(BaseModel):
    """Accepts camelCase on the wire and snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


class APIMessage(BaseModel):
    message: str = Field(..., description="Human readable message")


# =========================
# Auth / registration
# =========================

class LoginRequest(CamelModel):
    email: EmailStr = Field(..., description="User email address")
    password: str = Field(..., min_length=1, description="Password")

    @field_validator("email")
    @classmethod
    def _lower_email(cls, value: str) -> str:
        return value.lower()


class LoginUser(BaseModel):
    id: int
    email: str


class LoginResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str = "Login successful!"
    user: LoginUser
    token: str = Field(..., description="JWT access token")
    expires_in: str = Field(..., alias="expiresIn", description="Token lifetime, e.g. 24h")


class RegistrationRequest(CamelModel):
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    company_name: Optional[str] = Field(None, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=8, description="Password (min 8 chars, mixed case and a digit)")
    confirm_password: str
    phone: Optional[str] = None
    address: str = Field(..., min_length=1, max_length=200)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=2, max_length=2, description="2-character state code")
    zip_code: str = Field(..., min_length=5, max_length=10)

    @field_validator("email")
    @classmethod
    def _lower_email(cls, value: str) -> str:
        return value.lower()

    @field_validator("password")
    @classmethod
    def _strong_password(cls, value: str) -> str:
        return _check_password_strength(value)

    @field_validator("confirm_password")
    @classmethod
    def _passwords_match(cls, value: str, info: ValidationInfo) -> str:
        password = info.data.get("password")
        if password is not None and value != password:
            raise ValueError("Passwords do not match")
        return value

    @field_validator("phone")
    @classmethod
    def _valid_phone(cls, value: Optional[str]) -> Optional[str]:
        return _check_phone(value)


class RegisteredUser(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    email: str
    first_name: str = Field(..., alias="firstName")
    last_name: str = Field(..., alias="lastName")
    company_name: Optional[str] = Field(None, alias="companyName")


class RegistrationResponse(BaseModel):
    message: str = "User registered successfully!"
    user: RegisteredUser


# =========================
# Profile
# =========================

class ProfileUpdate(CamelModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(None, min_length=1, max_length=50)
    company_name: Optional[str] = Field(None, max_length=100)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = Field(None, min_length=1, max_length=200)
    city: Optional[str] = Field(None, min_length=1, max_length=100)
    state: Optional[str] = Field(None, min_length=2, max_length=2)
    zip_code: Optional[str] = Field(None, min_length=5, max_length=10)

    # Omitting a field leaves the column alone; only company name and phone may be cleared.
    @field_validator("first_name", "last_name", "email", "address", "city", "state", "zip_code", mode="before")
    @classmethod
    def _not_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("This field cannot be null")
        return value

    @field_validator("email")
    @classmethod
    def _lower_email(cls, value: Optional[str]) -> Optional[str]:
        return value.lower() if value else value

    @field_validator("phone")
    @classmethod
    def _valid_phone(cls, value: Optional[str]) -> Optional[str]:
        return _check_phone(value)

    def to_columns(self) -> Dict[str, Any]:
        """Only the fields the client actually sent, keyed by column name."""
        provided = self.model_dump(exclude_unset=True)
        return {PROFILE_COLUMNS[name]: value for name, value in provided.items()}


class PasswordChange(CamelModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8)

    @field_validator("new_password")
    @classmethod
    def _strong_password(cls, value: str) -> str:
        return _check_password_strength(value)


class ServicesUpdate(CamelModel):
    main_services: List[str] = Field(default_factory=list, description="Main category names (informational)")
    subservices: List[str] = Field(default_factory=list, description="Subservice names to offer")


class AreasUpdate(CamelModel):
    counties: List[str] = Field(default_factory=list, description="County names served")


class Profile(BaseModel):
    id: int
    first_name: str
    last_name: str
    company_name: Optional[str] = None
    email: str
    phone: Optional[str] = None
    address: str
    town: str
    state: str
    zip_code: str
    services_provided: List[str] = []
    subservices_provided: List[str] = []
    counties_provided: List[str] = []


# =========================
# Reference data
# =========================

class County(BaseModel):
    id: int
    name: str


class PaginationMeta(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    page: int
    limit: int
    total: int
    total_pages: int = Field(..., alias="totalPages")
    has_next: bool = Field(..., alias="hasNext")
    has_prev: bool = Field(..., alias="hasPrev")


class CountyPage(BaseModel):
    data: List[County]
    pagination: PaginationMeta


class ServiceCategory(BaseModel):
    name: str
    subservices: List[str] = []


# =========================
# Email
# =========================

class EmailRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    to: EmailStr
    subject: str = Field(..., min_length=1, max_length=200)
    text: Optional[str] = Field(None, max_length=10000)
    html: Optional[str] = Field(None, max_length=10000)

    @model_validator(mode="after")
    def _has_body(self) -> "EmailRequest":
        if not self.text and not self.html:
            raise ValueError("Either text or html content is required")
        return self
