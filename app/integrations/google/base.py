"""Shared HTTP plumbing for the Google REST API clients."""

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class GoogleAPIError(Exception):
    """Non-2xx response from a Google API.

    ``reason`` carries Google's machine-readable status (e.g.
    ``RESOURCE_EXHAUSTED``) so job handlers can classify the failure.
    """

    def __init__(self, status_code: int, message: str, reason: str | None = None) -> None:
        super().__init__(f"{status_code} {reason or ''}: {message}".replace("  ", " "))
        self.status_code = status_code
        self.message = message
        self.reason = reason

    @property
    def not_found(self) -> bool:
        return self.status_code == 404

    @classmethod
    def from_response(cls, response: httpx.Response) -> "GoogleAPIError":
        """Build from a Google error body, falling back to the raw text."""
        message = response.text[:500]
        reason: str | None = None
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, list) and body:
            # Google Ads REST wraps errors in a list for streaming endpoints
            body = body[0]
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            error = body["error"]
            message = error.get("message", message)
            reason = error.get("status")
            details = error.get("errors") or []
            if details and isinstance(details[0], dict) and details[0].get("reason"):
                reason = f"{reason} {details[0]['reason']}" if reason else details[0]["reason"]
        return cls(response.status_code, message, reason)


class GoogleAPIClient:
    """Base class: bearer-authenticated JSON requests against one API root."""

    base_url: str = ""

    def __init__(self, access_token: str) -> None:
        self.headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }

    def _url(self, path: str) -> str:
        if path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Any = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Issue one request and return the decoded JSON body ({} for empty).

        Raises:
            GoogleAPIError: For any non-2xx response.
        """
        async with httpx.AsyncClient(headers=self.headers, timeout=30.0) as client:
            response = await client.request(method, self._url(path), params=params, json=json)

        if not response.is_success:
            error = GoogleAPIError.from_response(response)
            logger.warning("%s %s failed: %s", method, path, error)
            raise error

        if not response.content:
            return {}
        data: dict[str, Any] = response.json()
        return data
