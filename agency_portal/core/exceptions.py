"""
core/exceptions.py
------------------
Domain error taxonomy.

Services raise these; the handlers registered in main.py turn them into
responses. Routes never translate them inline.

Access failures (TenantNotFound, InsufficientRole) share one response shape
so a caller cannot tell "does not exist" from "exists but not yours".
The `reason` attribute is for logs only.
"""

from typing import Optional, Sequence


class PortalError(Exception):
    """Base class for every error the portal raises on purpose."""


class NotAuthenticated(PortalError):
    """No valid session token on the request."""


class AccessDenied(PortalError):
    """
    landing_path is where the caller is sent instead: their own landing
    page, computed before raising, so every denial redirects the same way.
    """

    default_reason = "access_denied"

    def __init__(
        self,
        reason: Optional[str] = None,
        user_id: Optional[str] = None,
        landing_path: Optional[str] = None,
    ) -> None:
        reason = reason or self.default_reason
        super().__init__(reason)
        self.reason = reason
        self.user_id = user_id
        self.landing_path = landing_path


class TenantNotFound(AccessDenied):
    default_reason = "tenant_not_found"


class InsufficientRole(AccessDenied):
    default_reason = "insufficient_role"


class OnboardingRequired(PortalError):
    def __init__(self, workspace_ref: str) -> None:
        super().__init__(f"Onboarding required for {workspace_ref}")
        self.workspace_ref = workspace_ref


class NotFound(PortalError):
    """A child record (deliverable, node, ...) is missing inside an authorised tenant."""

    def __init__(self, what: str) -> None:
        super().__init__(f"{what} not found")
        self.what = what


class InvalidTransition(PortalError):
    """User-facing: the reason string is shown as-is."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class ValidationIncomplete(PortalError):
    def __init__(self, detail: str, missing: Sequence[str]) -> None:
        super().__init__(detail)
        self.detail = detail
        self.missing = list(missing)
