"""
Email/password authentication endpoints.
"""

import hashlib
import hmac
import os
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from backend.app.api.deps import get_services
from backend.app.core.auth.jwt_auth import create_access_token
from backend.app.core.db.relational import DBUser, get_relational_session
from backend.app.observability.logging import log_event
from backend.app.orchestrator.factory import AppServices


router = APIRouter(prefix="/api/auth", tags=["auth"])

PBKDF2_ITERATIONS = 120_000
PBKDF2_ALGORITHM = "sha256"
SALT_BYTES = 16


class FullName(BaseModel):
    firstName: str
    lastName: str


class RegisterRequest(BaseModel):
    email: str
    fullName: FullName
    password: str


class LoginRequest(BaseModel):
    email: str
    password: str


class UserPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="_id")
    email: str
    fullName: FullName


class AuthResponse(BaseModel):
    message: str
    user: UserPayload


def normalize_email(email: str) -> str:
    return email.strip().lower()


def hash_password(password: str) -> str:
    salt = os.urandom(SALT_BYTES)
    digest = hashlib.pbkdf2_hmac(
        PBKDF2_ALGORITHM,
        password.encode("utf-8"),
        salt,
        PBKDF2_ITERATIONS,
    )
    return f"pbkdf2_{PBKDF2_ALGORITHM}${PBKDF2_ITERATIONS}${salt.hex()}${digest.hex()}"


def verify_password(password: str, password_hash: str) -> bool:
    try:
        algo, iterations, salt_hex, digest_hex = password_hash.split("$", 3)
        if algo != f"pbkdf2_{PBKDF2_ALGORITHM}":
            return False
        salt = bytes.fromhex(salt_hex)
        expected = bytes.fromhex(digest_hex)
        computed = hashlib.pbkdf2_hmac(
            PBKDF2_ALGORITHM,
            password.encode("utf-8"),
            salt,
            int(iterations),
        )
        return hmac.compare_digest(computed, expected)
    except Exception:
        return False


def validate_auth_payload(email: str, password: str):
    if not email or "@" not in email:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Valid email is required",
        )
    if not password or len(password) < 8:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Password must be at least 8 characters",
        )


def _set_auth_cookie(response: Response, services: AppServices, user_id: str, email: str):
    token = create_access_token({"sub": user_id, "email": email}, services.settings)
    response.set_cookie(
        key=services.settings.auth_cookie_name,
        value=token,
        httponly=True,
        samesite="lax",
        secure=services.settings.app_env == "prod",
        max_age=services.settings.jwt_expire_minutes * 60,
    )


def _user_payload(user: DBUser) -> UserPayload:
    return UserPayload(
        id=user.id,
        email=user.email,
        fullName=FullName(firstName=user.first_name, lastName=user.last_name),
    )


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(payload: RegisterRequest, response: Response, services: AppServices = Depends(get_services)):
    email = normalize_email(payload.email)
    validate_auth_payload(email, payload.password)
    if not payload.fullName.firstName.strip() or not payload.fullName.lastName.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="First and last name are required",
        )

    user = DBUser(
        id=str(uuid.uuid4()),
        email=email,
        first_name=payload.fullName.firstName.strip(),
        last_name=payload.fullName.lastName.strip(),
        password_hash=hash_password(payload.password),
        created_at=datetime.now(timezone.utc),
    )
    try:
        with get_relational_session(services.session_factory) as db:
            if db.query(DBUser.id).filter(DBUser.email == email).first():
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail="Account already exists for this email",
                )
            db.add(user)
    except HTTPException:
        raise
    except IntegrityError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Account already exists for this email",
        )
    except SQLAlchemyError as exc:
        log_event("register_failed", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database unavailable. Please try again.",
        )

    _set_auth_cookie(response, services, user.id, email)
    log_event("user_registered", user_id=user.id)
    return AuthResponse(message="User registered successfully", user=_user_payload(user))


@router.post("/login", response_model=AuthResponse)
async def login(payload: LoginRequest, response: Response, services: AppServices = Depends(get_services)):
    email = normalize_email(payload.email)
    validate_auth_payload(email, payload.password)

    try:
        with get_relational_session(services.session_factory) as db:
            user = db.query(DBUser).filter(DBUser.email == email).first()
    except SQLAlchemyError as exc:
        log_event("login_failed", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database unavailable. Please try again.",
        )

    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    _set_auth_cookie(response, services, user.id, email)
    return AuthResponse(message="User logged in successfully", user=_user_payload(user))


@router.post("/logout")
async def logout(response: Response, services: AppServices = Depends(get_services)):
    response.delete_cookie(services.settings.auth_cookie_name)
    return {"message": "User logged out successfully"}
