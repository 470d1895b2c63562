# gst_engine/infrastructure/external/document_client.py
"""
Document rendering service client.

Posts self-invoice and reconciliation payloads to an external rendering
service and returns the rendered document (PDF) bytes. The client is
constructed explicitly and passed to whoever needs it; there is no shared
module-level instance.

Endpoints:
  POST /documents/self-invoice
  POST /documents/reconciliation-report
"""

from __future__ import annotations

import logging
from typing import Any, Dict

import httpx

logger = logging.getLogger("document_client")


class DocumentServiceError(Exception):
    """Raised when the document service returns an error or cannot be reached."""

    def __init__(self, message: str, status_code: int = 0, response: dict | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response or {}


class DocumentClient:
    """Client for the document rendering service."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        api_key: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        self.base = base_url.rstrip("/")
        self.timeout = timeout
        self.api_key = api_key
        self._transport = transport

    @classmethod
    def from_settings(cls, config=None, **kwargs) -> "DocumentClient":
        if config is None:
            from gst_engine.config.settings import settings as config
        return cls(
            base_url=config.DOCUMENT_SERVICE_BASE_URL,
            timeout=config.DOCUMENT_SERVICE_TIMEOUT,
            api_key=config.DOCUMENT_SERVICE_API_KEY,
            **kwargs,
        )

    def _headers(self) -> Dict[str, str]:
        h = {"Content-Type": "application/json", "Accept": "application/pdf"}
        if self.api_key:
            h["Authorization"] = f"Bearer {self.api_key}"
        return h

    async def _post(self, path: str, payload: Dict[str, Any]) -> bytes:
        url = f"{self.base}{path}"
        logger.info("Document service POST %s", path)

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                r = await client.post(url, headers=self._headers(), json=payload)
                r.raise_for_status()
            except httpx.HTTPStatusError as exc:
                body: dict = {}
                try:
                    body = exc.response.json()
                except ValueError:
                    pass
                logger.error("Document service HTTP error: %s -> %d", path, exc.response.status_code)
                raise DocumentServiceError(
                    f"Document service error: {exc.response.status_code}",
                    status_code=exc.response.status_code,
                    response=body,
                ) from exc
            except httpx.TimeoutException as exc:
                logger.error("Document service timeout: %s", path)
                raise DocumentServiceError("Document service timeout") from exc
            except httpx.HTTPError as exc:
                raise DocumentServiceError(f"Document service unreachable: {exc}") from exc

        logger.info("Document service response status=%d bytes=%d", r.status_code, len(r.content))
        return r.content

    async def render_self_invoice(self, payload: Dict[str, Any]) -> bytes:
        """Render an RCM self-invoice."""
        return await self._post("/documents/self-invoice", payload)

    async def render_reconciliation_report(self, payload: Dict[str, Any]) -> bytes:
        """Render a GSTR-2B reconciliation report."""
        return await self._post("/documents/reconciliation-report", payload)
