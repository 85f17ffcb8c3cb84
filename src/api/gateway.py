# manages the http session to the backend, normalizes response envelopes
from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

import aiohttp

from core.errors import AuthRequired, RequestFailed, TransportError, ValidationRejected
from utils import config
from utils.logger import get_logger

_logger = get_logger(__name__)

# 401 codes the backend uses when the token itself is the problem
TOKEN_ERROR_CODES = {"INVALID_TOKEN", "TOKEN_EXPIRED", "MALFORMED_TOKEN", "NO_TOKEN"}

NETWORK_ERROR_MESSAGE = (
    "Unable to connect to the server. Please check your internet connection."
)


class RequestGateway:
    """Thin transport over aiohttp.

    Every call carries the current session token (read at send time, so a
    login or logout takes effect immediately) and returns the decoded
    ``{success: true, ...}`` envelope. Anything else is raised as one of the
    ``core.errors`` types.
    """

    def __init__(
        self,
        session,
        base_url: str = config.API_BASE_URL,
        timeout: float = config.REQUEST_TIMEOUT,
        http: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._session = session
        self._base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._http = http
        self._owns_http = http is None

    def _client(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession(
                timeout=self._timeout,
                headers={"Content-Type": "application/json"},
            )
            self._owns_http = True
        return self._http

    def _headers(self) -> Dict[str, str]:
        token = self._session.token if self._session is not None else None
        if token:
            return {"Authorization": f"Bearer {token}"}
        return {}

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = f"{self._base_url}/{path.lstrip('/')}"
        query = _encode_params(params)
        _logger.debug(f"{method} {url} params={query}")
        try:
            async with self._client().request(
                method,
                url,
                params=query,
                json=json,
                headers=self._headers(),
                timeout=self._timeout,
            ) as resp:
                try:
                    body = await resp.json(content_type=None)
                except ValueError:
                    body = None
                status = resp.status
        except asyncio.TimeoutError as e:
            _logger.warning(f"{method} {url} timed out")
            raise TransportError("The server took too long to respond.") from e
        except aiohttp.ClientError as e:
            _logger.warning(f"{method} {url} failed: {e}")
            raise TransportError(NETWORK_ERROR_MESSAGE) from e

        return _normalize(status, body)

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None):
        return await self.request("GET", path, params=params)

    async def post(self, path: str, json: Optional[Dict[str, Any]] = None):
        return await self.request("POST", path, json=json)

    async def put(self, path: str, json: Optional[Dict[str, Any]] = None):
        return await self.request("PUT", path, json=json)

    async def close(self) -> None:
        if self._http is not None and self._owns_http and not self._http.closed:
            await self._http.close()


def _encode_params(params: Optional[Dict[str, Any]]) -> Optional[Dict[str, str]]:
    # aiohttp only accepts str/int/float query values
    if not params:
        return None
    encoded = {}
    for key, value in params.items():
        if value is None or value == "":
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        encoded[key] = str(value)
    return encoded


def _normalize(status: int, body: Any) -> Dict[str, Any]:
    if not isinstance(body, dict):
        body = {}
    message = body.get("message")

    if status == 401 or body.get("requiresAuth"):
        code = body.get("code")
        if code in TOKEN_ERROR_CODES:
            _logger.warning(f"token rejected by server ({code})")
        raise AuthRequired(message or "Session expired. Please login again.", code)
    if status in (400, 422):
        raise ValidationRejected(message or "The request was rejected.", status)
    if status >= 400 or not body.get("success"):
        raise RequestFailed(message or f"Request failed ({status}).", status)
    return body
