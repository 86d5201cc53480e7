"""Async HTTP client for the Identity service."""

from __future__ import annotations

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from crowdsource_service.core.exceptions import ServiceError, UnauthenticatedError
from crowdsource_service.logging import get_logger
from crowdsource_service.models import Principal, Role

logger = get_logger(__name__)


class _Verification(BaseModel):
    """Body of a successful verification reply."""

    model_config = ConfigDict(extra="ignore", strict=True)
    valid: bool
    uid: str | None = None
    role: int | None = None


def _unavailable(message: str) -> ServiceError:
    return ServiceError(
        error="IDENTITY_SERVICE_UNAVAILABLE",
        message=message,
        status_code=502,
        details={},
    )


class IdentityClient:
    """
    Resolves bearer tokens to principals.

    Accounts, passwords and sessions live in the Identity service. A token
    is opaque here: it is posted to the verification endpoint, which answers
    with the user id and the role bitmask.
    """

    def __init__(
        self,
        base_url: str,
        verify_token_path: str,
        timeout_seconds: int,
    ) -> None:
        self._base_url = base_url
        self._verify_token_path = verify_token_path
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def _post_token(self, token: str) -> httpx.Response:
        try:
            return await self._client.post(self._verify_token_path, json={"token": token})
        except httpx.TransportError as exc:
            logger.warning(
                "Identity service unreachable",
                extra={"error": repr(exc), "base_url": self._base_url},
            )
            raise _unavailable("Cannot connect to Identity service") from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "Identity service request failed",
                extra={"error": repr(exc), "base_url": self._base_url},
            )
            raise _unavailable("Identity service request failed") from exc

    async def verify_token(self, token: str) -> Principal:
        """
        Ask the Identity service who holds ``token``.

        Raises:
            UnauthenticatedError: the token is unknown or expired
            ServiceError: IDENTITY_SERVICE_UNAVAILABLE (502) when the service
                cannot be reached or answers with something unusable
        """
        response = await self._post_token(token)
        if response.status_code != 200:
            logger.warning(
                "Identity service answered with status %s",
                response.status_code,
                extra={"base_url": self._base_url},
            )
            raise _unavailable("Identity service returned unexpected status")

        try:
            verification = _Verification.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise _unavailable("Identity service returned a malformed response") from exc

        if not verification.valid:
            raise UnauthenticatedError("Token verification failed")
        if verification.uid is None or verification.role is None:
            raise _unavailable("Identity service returned a malformed response")
        return Principal(uid=verification.uid, role=Role(verification.role))

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
