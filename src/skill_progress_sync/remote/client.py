"""HTTP transport for the remote progress API."""

from collections.abc import Callable
from typing import Any

import httpx
import structlog

from skill_progress_sync.remote.result import CallResult, ErrorKind, classify_status

logger = structlog.get_logger()

# Returns the current session credential, or None when signed out
CredentialProvider = Callable[[], str | None]


class ProgressApiClient:
    """Sends one request per call and reports the outcome as a CallResult.

    Never raises for HTTP or network failures; retries are not performed.

    Args:
        base_url: Remote API origin, e.g. ``http://localhost:3001``.
        credentials: Session token or a callable returning the current one.
        timeout_seconds: Transport timeout for every request.
        http_client: Pre-built client (tests inject a MockTransport here).
    """

    def __init__(
        self,
        base_url: str,
        credentials: str | CredentialProvider | None = None,
        timeout_seconds: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        if callable(credentials):
            self._credentials = credentials
        else:
            self._credentials = lambda: credentials
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        token = self._credentials()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> CallResult:
        try:
            response = await self._http.request(
                method,
                f"{self.base_url}{path}",
                json=json,
                params=params,
                headers=self._headers(),
            )
        except httpx.HTTPError as exc:
            logger.warning("progress_api_unreachable", method=method, path=path, error=str(exc))
            return CallResult.failure(ErrorKind.TRANSPORT, detail=str(exc))

        if not response.is_success:
            kind = classify_status(response.status_code)
            logger.warning(
                "progress_api_error",
                method=method,
                path=path,
                status_code=response.status_code,
                error_kind=kind.value,
            )
            return CallResult.failure(
                kind, detail=response.text[:200], status_code=response.status_code
            )

        try:
            data = response.json()
        except ValueError:
            return CallResult.failure(
                ErrorKind.MALFORMED,
                detail="response body is not JSON",
                status_code=response.status_code,
            )
        return CallResult.success(response.status_code, data)

    async def close(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> "ProgressApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
