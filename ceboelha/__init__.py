"""Ceboelha: authentication and session security core for the Ceboelha API."""

__version__ = "0.1.0"

# Core components
from ceboelha.core.client import S3ClientManager
from ceboelha.core.exceptions import (
    CeboelhaError,
    ConfigurationError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    RateLimitError,
    S3ConnectionError,
    StaleDocumentError,
    StoreError,
    UnauthorizedError,
    ValidationError,
)
from ceboelha.core.settings import CeboelhaSettings, get_settings, load_settings
from ceboelha.core.store import BaseDocument, DocumentStore

# Auth components
from ceboelha.auth.ledger import RefreshTokenLedger
from ceboelha.auth.lockout import BruteForceTracker
from ceboelha.auth.models import RefreshToken, User, UserRole, UserStatus
from ceboelha.auth.passwords import PasswordHasher
from ceboelha.auth.rate_limit import RateLimiter, rate_limit
from ceboelha.auth.service import AuthService, create_auth_service
from ceboelha.auth.tokens import TokenSigner

# FastAPI components
from ceboelha.fastapi.app import create_app
from ceboelha.fastapi.dependencies import get_current_user
from ceboelha.fastapi.error_handlers import register_error_handlers

__all__ = [
    # Version
    "__version__",
    # Core
    "S3ClientManager",
    "CeboelhaSettings",
    "get_settings",
    "load_settings",
    "BaseDocument",
    "DocumentStore",
    "CeboelhaError",
    "ConfigurationError",
    "ConflictError",
    "ForbiddenError",
    "NotFoundError",
    "RateLimitError",
    "S3ConnectionError",
    "StaleDocumentError",
    "StoreError",
    "UnauthorizedError",
    "ValidationError",
    # Auth
    "AuthService",
    "create_auth_service",
    "PasswordHasher",
    "TokenSigner",
    "RefreshTokenLedger",
    "BruteForceTracker",
    "RateLimiter",
    "rate_limit",
    "User",
    "UserRole",
    "UserStatus",
    "RefreshToken",
    # FastAPI
    "create_app",
    "get_current_user",
    "register_error_handlers",
]
