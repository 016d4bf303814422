import logging
import math
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

import psycopg2
from dotenv import load_dotenv
from fastapi import Cookie, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from jose import JWTError, jwt
from pydantic import BaseModel

from seller_backend import app_context
from seller_backend.app.billing import PostgresBillingRepository
from seller_backend.app.routes.billing import router as billing_router
from seller_backend.app.services.billing import get_billing_services

load_dotenv()


def _parse_connect_timeout(raw_value: str) -> int:
    try:
        timeout = float(raw_value)
    except ValueError as exc:
        raise ValueError("DB_CONNECT_TIMEOUT must be a number") from exc
    if timeout < 0:
        raise ValueError("DB_CONNECT_TIMEOUT must be non-negative")
    return int(math.ceil(timeout))


DB_CFG = dict(
    host=os.getenv("DB_HOST", "127.0.0.1"),
    port=int(os.getenv("DB_PORT", "5432")),
    dbname=os.getenv("DB_NAME", "horse_market"),
    user=os.getenv("DB_USER", "seller_app"),
    password=os.getenv("DB_PASSWORD", "seller_pass"),
    connect_timeout=_parse_connect_timeout(os.getenv("DB_CONNECT_TIMEOUT", "5")),
)

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-change-me")
JWT_ALGORITHM = "HS256"
JWT_EXP_MINUTES = int(os.getenv("JWT_EXP_MINUTES", str(60 * 24 * 7)))  # default: 7 days
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")
CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",") if origin.strip()]

logger = logging.getLogger("seller_backend")


class SellerPrincipal(BaseModel):
    """Authenticated caller; ``id`` is the seller id carried in the session token."""

    id: str
    role: str = "seller"


def get_conn():
    return psycopg2.connect(**DB_CFG)


def create_access_token(*, subject: str, role: str = "seller", expires_delta: Optional[timedelta] = None) -> str:
    if expires_delta is None:
        expires_delta = timedelta(minutes=JWT_EXP_MINUTES)
    payload = {"sub": subject, "role": role, "exp": datetime.now(timezone.utc) + expires_delta}
    return jwt.encode(payload, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def resolve_principal_from_session_token(session_token: str) -> Optional[SellerPrincipal]:
    try:
        payload = jwt.decode(session_token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError:
        return None
    subject = payload.get("sub")
    if not subject:
        return None
    return SellerPrincipal(id=str(subject), role=str(payload.get("role") or "seller"))


def get_current_user(session_token: Optional[str] = Cookie(None, alias=SESSION_COOKIE_NAME)) -> SellerPrincipal:
    if not session_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    principal = resolve_principal_from_session_token(session_token)
    if principal is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return principal


app_context.configure(get_conn=get_conn, get_current_user=get_current_user)

app = FastAPI(title="Seller Entitlements API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(billing_router)


@app.on_event("startup")
def prepare_billing() -> None:
    services = get_billing_services()
    if isinstance(services.repository, PostgresBillingRepository):
        services.repository.ensure_schema()
    logger.info(
        "Seller entitlements API ready",
        extra={"billing_store": services.config.store_name, "catalog_version": services.catalog.version},
    )
