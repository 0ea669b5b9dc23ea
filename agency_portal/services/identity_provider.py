"""
services/identity_provider.py
-----------------------------
Thin async client for the identity provider's organisation API.

The provider is the source of truth for *who the user is*; the Membership
table is the source of truth for *role within a tenant* and is refreshed
from here in the background.

With no IDP_API_KEY configured the client runs disabled: every lookup
returns None and the sync paths become no-ops.
"""

from dataclasses import dataclass
from typing import Optional

import httpx

from agency_portal.core.config import settings
from agency_portal.core.logging import get_logger
from agency_portal.models.tenant import Role

logger = get_logger(__name__)

_PROVIDER_ROLE_MAP = {
    "org:admin": Role.admin,
    "admin": Role.admin,
    "org:member": Role.member,
    "member": Role.member,
    "org:basic_member": Role.member,
    "basic_member": Role.member,
}


@dataclass(frozen=True)
class ProviderMember:
    user_id: str
    role: Role


def map_provider_role(provider_role: Optional[str]) -> Role:
    """Provider roles never map to owner; unknown roles fall back to member."""
    return _PROVIDER_ROLE_MAP.get(provider_role or "", Role.member)


class IdentityProviderClient:

    def __init__(
        self,
        api_url: str = settings.IDP_API_URL,
        api_key: str = settings.IDP_API_KEY,
        timeout: float = settings.IDP_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport
        self.enabled = bool(api_key)
        if not self.enabled:
            logger.info("IdentityProviderClient disabled: set IDP_API_KEY to enable role sync")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._api_url,
            headers={"Authorization": f"Bearer {self._api_key}"},
            timeout=self._timeout,
            transport=self._transport,
        )

    async def get_org_name(self, provider_org_id: str) -> Optional[str]:
        if not self.enabled:
            return None
        try:
            async with self._client() as client:
                resp = await client.get(f"/organizations/{provider_org_id}")
                resp.raise_for_status()
                return resp.json().get("name") or None
        except httpx.HTTPError as exc:
            logger.warning(
                "Provider org lookup failed", provider_org_id=provider_org_id, error=str(exc)
            )
            return None

    async def get_org_members(self, provider_org_id: str) -> Optional[list[ProviderMember]]:
        """
        Return the organisation's members with mapped roles, or None when the
        provider is disabled or unreachable. Errors propagate as None so
        callers on the background path never see them.
        """
        if not self.enabled:
            return None
        try:
            async with self._client() as client:
                resp = await client.get(
                    f"/organizations/{provider_org_id}/memberships",
                    params={"limit": 500},
                )
                resp.raise_for_status()
                payload = resp.json()
        except httpx.HTTPError as exc:
            logger.warning(
                "Provider membership list failed",
                provider_org_id=provider_org_id,
                error=str(exc),
            )
            return None

        members: list[ProviderMember] = []
        for item in payload.get("data", []):
            user_id = (item.get("public_user_data") or {}).get("user_id") or item.get("user_id")
            if not user_id:
                continue
            members.append(ProviderMember(user_id=user_id, role=map_provider_role(item.get("role"))))
        return members


def get_identity_provider() -> IdentityProviderClient:
    """FastAPI dependency; overridden in tests."""
    return identity_provider


# Process-wide client, swapped out through dependency_overrides in tests
identity_provider = IdentityProviderClient()
