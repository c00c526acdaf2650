"""HTTP clients for the identity and profile services."""

from typing import Any

import httpx
import structlog

from app.config import settings
from app.core.exceptions import (
    AppException,
    ForbiddenException,
    NotFoundException,
    ServiceUnavailableException,
    UnauthorizedException,
)
from app.core.security import INTERNAL_SERVICE_HEADER

logger = structlog.get_logger()


class ServiceClient:
    """Base client: bounded timeout, dependency failures mapped to 503."""

    service = "service"

    def __init__(
        self,
        base_url: str,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or settings.service_timeout_seconds
        self.transport = transport

    def _internal_headers(self) -> dict[str, str]:
        return {INTERNAL_SERVICE_HEADER: settings.internal_service_token}

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        url = f"{self.base_url}{settings.api_v1_prefix}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                return await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.error("service_call_timeout", service=self.service, path=path, error=str(e))
            raise ServiceUnavailableException(f"{self.service} service timed out")
        except httpx.HTTPError as e:
            logger.error("service_call_failed", service=self.service, path=path, error=str(e))
            raise ServiceUnavailableException(f"{self.service} service unavailable")

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        try:
            message = response.json().get("message") or response.reason_phrase
        except ValueError:
            message = response.reason_phrase
        if response.status_code == 401:
            raise UnauthorizedException(message)
        if response.status_code == 403:
            raise ForbiddenException(message)
        if response.status_code == 404:
            raise NotFoundException(message)
        if response.status_code >= 500:
            raise ServiceUnavailableException(f"{self.service} service error: {message}")
        raise AppException(message, status_code=response.status_code)


class IdentityClient(ServiceClient):
    """Client of the identity service."""

    service = "identity"

    def __init__(self, base_url: str | None = None, **kwargs: Any):
        super().__init__(base_url or settings.identity_service_url, **kwargs)

    async def validate_token(self, token: str) -> dict[str, Any]:
        """
        Validate a bearer token with the identity service.

        Returns:
            The authenticated user (id, email, role, name, surname, profile_complete)

        Raises:
            UnauthorizedException: If the token is invalid
            ForbiddenException: If the account is deactivated
            ServiceUnavailableException: If the identity service cannot be reached
        """
        response = await self._request(
            "POST",
            "/auth/validate-token",
            headers={"Authorization": f"Bearer {token}"},
        )
        self._raise_for_status(response)
        return response.json()["user"]

    async def list_internal_users(self) -> list[dict[str, Any]]:
        """Full account listing (no credential hashes)."""
        response = await self._request(
            "GET", "/auth/internal/users", headers=self._internal_headers()
        )
        self._raise_for_status(response)
        return response.json()["users"]


class ProfileClient(ServiceClient):
    """Client of the profile service."""

    service = "profile"

    def __init__(self, base_url: str | None = None, **kwargs: Any):
        super().__init__(base_url or settings.profile_service_url, **kwargs)

    async def get_user(self, user_id: int) -> dict[str, Any]:
        """
        Fetch a user profile, materializing it on demand.

        When the profile service does not know the user yet (replication lag),
        it is asked to sync the user from the identity service.

        Raises:
            NotFoundException: If neither service knows the user
            ServiceUnavailableException: If the profile service cannot be reached
        """
        response = await self._request(
            "GET", f"/users/{user_id}", headers=self._internal_headers()
        )
        if response.status_code == 404:
            logger.info("profile_user_missing_syncing", user_id=user_id)
            response = await self._request(
                "POST", f"/users/sync/{user_id}", headers=self._internal_headers()
            )
            if response.status_code == 404:
                raise NotFoundException("User not found")
        self._raise_for_status(response)
        return response.json()

    async def get_user_quiet(self, user_id: int) -> dict[str, Any] | None:
        """Best-effort lookup: any failure yields None."""
        try:
            return await self.get_user(user_id)
        except AppException as e:
            logger.debug("profile_lookup_failed", user_id=user_id, error=e.message)
            return None
