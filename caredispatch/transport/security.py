# caredispatch/transport/security.py
"""
Security utilities for the dispatch API.

- Volunteer identity from gateway headers, optionally HMAC-signed
- Constant-time comparison for every token and signature check
- Bearer auth for admin (dev seeding) and metrics endpoints
- Dev-only endpoint guard
- OWASP security headers and production-safe error messages
"""
import hashlib
import hmac

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from caredispatch.config import settings
from caredispatch.core.dispatch.domain import CallerIdentity, VolunteerCategory
from caredispatch.infra.logging_config import get_logger

logger = get_logger(__name__)

VOLUNTEER_ID_HEADER = "X-Volunteer-Id"
VOLUNTEER_CATEGORY_HEADER = "X-Volunteer-Category"
IDENTITY_SIGNATURE_HEADER = "X-Identity-Signature"

admin_bearer_scheme = HTTPBearer(
    scheme_name="Admin Token",
    description="Enter your admin token (without 'Bearer ' prefix)",
    auto_error=False,
)

metrics_bearer_scheme = HTTPBearer(
    scheme_name="Metrics Token",
    description="Enter your metrics token (without 'Bearer ' prefix)",
    auto_error=False,
)


# =============================================================================
# Volunteer identity
# =============================================================================
# The auth gateway verifies the volunteer's session and forwards:
#
#   X-Volunteer-Id:       <volunteer id>
#   X-Volunteer-Category: LEGAL | POLICE | MENTAL
#   X-Identity-Signature: hex(HMAC-SHA256(IDENTITY_SIGNING_SECRET, "<id>:<category>"))
#
# The signature header is required whenever IDENTITY_SIGNING_SECRET is set.
# =============================================================================

def compute_identity_signature(secret: str, volunteer_id: str, category: str) -> str:
    """Hex HMAC-SHA256 over ``"<volunteer_id>:<category>"``."""
    return hmac.new(
        secret.encode(),
        f"{volunteer_id}:{category}".encode(),
        hashlib.sha256,
    ).hexdigest()


def verify_identity_signature(
    secret: str,
    volunteer_id: str,
    category: str,
    signature: str | None,
) -> tuple[bool, str | None]:
    """
    Returns:
        (is_valid, error_message)
    """
    if not signature:
        return False, f"Missing {IDENTITY_SIGNATURE_HEADER} header"

    expected = compute_identity_signature(secret, volunteer_id, category)
    if not hmac.compare_digest(signature.strip().lower(), expected):
        return False, "Invalid identity signature"

    return True, None


def require_caller_identity(request: Request) -> CallerIdentity:
    """
    Dependency resolving the verified caller of a volunteer endpoint.

    Usage:
        @app.post("/volunteers/me/status")
        async def update(caller: CallerIdentity = Depends(require_caller_identity)):
            ...
    """
    volunteer_id = (request.headers.get(VOLUNTEER_ID_HEADER) or "").strip()
    raw_category = (request.headers.get(VOLUNTEER_CATEGORY_HEADER) or "").strip()

    if not volunteer_id or not raw_category:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"{VOLUNTEER_ID_HEADER} and {VOLUNTEER_CATEGORY_HEADER} headers are required",
        )

    try:
        category = VolunteerCategory(raw_category.upper())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown volunteer category '{raw_category}'",
        )

    if settings.identity_signing_secret:
        is_valid, error = verify_identity_signature(
            settings.identity_signing_secret,
            volunteer_id,
            category.value,
            request.headers.get(IDENTITY_SIGNATURE_HEADER),
        )
        if not is_valid:
            logger.warning(
                f"Rejected volunteer identity: {error}",
                extra={"volunteer_id": volunteer_id},
            )
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=error,
            )

    return CallerIdentity(volunteer_id=volunteer_id, category=category)


# =============================================================================
# Admin / dev / metrics guards
# =============================================================================

def require_dev_environment():
    """Dependency factory hiding fictional-volunteer seeding outside dev (404, not 403)."""
    def dependency():
        if settings.app_env != "dev":
            logger.warning(f"Dev-only endpoint requested in {settings.app_env}")
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    return dependency


def _check_bearer(credentials: HTTPAuthorizationCredentials | None, expected: str, label: str) -> None:
    if credentials and hmac.compare_digest(credentials.credentials, expected):
        return
    logger.warning(f"{label} token {'missing' if credentials is None else 'rejected'}")
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Authentication required" if credentials is None else "Invalid credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


def require_admin_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(admin_bearer_scheme),
):
    """
    Bearer guard for dev seeding.

    Open when ADMIN_TOKEN is unset; prod refuses to start without one.
    """
    if settings.admin_token:
        _check_bearer(credentials, settings.admin_token, "Admin")


def require_metrics_auth(
    credentials: HTTPAuthorizationCredentials | None = Depends(metrics_bearer_scheme),
):
    """
    Guard for /metrics: Bearer METRICS_TOKEN when configured, otherwise dev only.

        curl -H "Authorization: Bearer <metrics-token>" http://host/metrics
    """
    if settings.metrics_token:
        _check_bearer(credentials, settings.metrics_token, "Metrics")
    elif settings.app_env != "dev":
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")


class SecurityHeaders:
    """OWASP recommended headers for a JSON API."""

    @staticmethod
    def add_security_headers(response):
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        # Complaint locations and phone numbers must never land in shared caches
        response.headers["Cache-Control"] = "no-store"

        if settings.is_production or settings.is_staging:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        if "Server" in response.headers:
            del response.headers["Server"]

        return response


def sanitize_error_message(error: Exception, is_production: bool) -> str:
    """
    Detailed messages in dev, generic ones in production.
    """
    if not is_production:
        return str(error)

    generic_messages = {
        "ValueError": "Invalid input",
        "KeyError": "Invalid request",
        "ConnectionError": "Service temporarily unavailable",
        "TimeoutError": "Request timeout",
    }

    return generic_messages.get(type(error).__name__, "An error occurred")
