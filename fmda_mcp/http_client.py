import mimetypes
import os
from typing import Any, Dict, Optional, Tuple

import httpx

from .errors import FileMakerAPIError, UnauthorizedError


class HttpClient:
    """Thin wrapper around httpx for talking to the FileMaker Data API."""

    def __init__(
        self,
        *,
        verify_ssl: bool = True,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.verify_ssl = verify_ssl
        self.timeout = timeout
        self.transport = transport

    @staticmethod
    def _auth_header(token: Optional[str]) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}"} if token else {}

    @staticmethod
    def _error_from(response: httpx.Response) -> FileMakerAPIError:
        code = None
        payload: Any = None
        try:
            payload = response.json()
            messages = payload.get("messages") or [{}]
            code = messages[0].get("code")
            message = messages[0].get("message") or response.reason_phrase
        except (ValueError, AttributeError, IndexError):
            message = response.text or response.reason_phrase
        error_cls = UnauthorizedError if response.status_code == 401 else FileMakerAPIError
        return error_cls(response.status_code, message, code=code, payload=payload)

    async def _handle(self, response: httpx.Response) -> Dict[str, Any]:
        if not response.is_success:
            raise self._error_from(response)
        if not response.content:
            return {}
        return response.json()

    async def request(
        self,
        method: str,
        url: str,
        *,
        access_token: Optional[str] = None,
        basic_auth: Optional[Tuple[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Any] = None,
        files: Optional[Dict[str, Any]] = None,
        capture_response: bool = False,
    ) -> Dict[str, Any] | Tuple[Dict[str, Any], httpx.Response]:
        """
        Make an HTTP request to a Data API URL.

        When capture_response=True, returns (json, httpx.Response) so callers can read headers.
        """
        headers = self._auth_header(access_token)
        async with httpx.AsyncClient(
            timeout=self.timeout,
            verify=self.verify_ssl,
            transport=self.transport,
        ) as client:
            response = await client.request(
                method,
                url,
                params=params,
                json=json_body,
                files=files,
                headers=headers,
                auth=basic_auth,
            )
        payload = await self._handle(response)
        if capture_response:
            return payload, response
        return payload

    @staticmethod
    def file_payload(file_path: str):
        """Return (filename, bytes, mime) tuple suitable for httpx files=."""
        with open(file_path, "rb") as fh:
            data = fh.read()
        filename = os.path.basename(file_path)
        mime_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
        return (filename, data, mime_type)
