"""
Clients for the two services the engine consumes but does not implement.

MetadataClient   GET  /chain?id=<identifier>  -> {success, chain, error?}
UploadClient     POST /upload-and-mint        -> {mint, explorerLink, ...} | {error}

Both are thin request/response wrappers: one call, one timeout, errors
mapped to TransportError (network) or ServiceError (the service said no).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from fundline_core.errors import ServiceError, TransportError

logger = logging.getLogger("fundline_services")


@dataclass(frozen=True)
class MintResult:
    mint: str
    explorer_link: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False)


class _ServiceClient:

    def __init__(self, base_url: str, timeout: float = 30.0,
                 session: aiohttp.ClientSession | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self.base_url}{path}"
        session = await self._get_session()
        try:
            async with session.request(
                method, url,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                **kwargs,
            ) as resp:
                try:
                    body = await resp.json(content_type=None)
                except ValueError:
                    body = None
                if resp.status >= 400:
                    message = body.get("error") if isinstance(body, dict) else None
                    raise ServiceError(
                        message or f"{method} {path}: HTTP {resp.status}", endpoint=url
                    )
                if not isinstance(body, dict):
                    raise TransportError(f"{method} {path}: malformed response", endpoint=url)
                return body
        except asyncio.TimeoutError as exc:
            raise TransportError(f"{method} {path}: timed out after {self.timeout}s",
                                 endpoint=url) from exc
        except aiohttp.ClientError as exc:
            raise TransportError(f"{method} {path}: {exc.__class__.__name__}",
                                 endpoint=url) from exc


class MetadataClient(_ServiceClient):
    """Read-only fetch of the record chain behind an identifier."""

    async def fetch_chain(self, identifier: str) -> list[dict[str, Any]]:
        if not identifier:
            raise ValueError("identifier is required")
        body = await self._request("GET", "/chain", params={"id": identifier})
        if not body.get("success"):
            raise ServiceError(body.get("error") or "metadata service reported failure")
        chain = body.get("chain")
        if not isinstance(chain, list):
            raise TransportError("metadata service returned no chain")
        logger.debug(f"Fetched chain of {len(chain)} records for {identifier}")
        return chain


class UploadClient(_ServiceClient):
    """Upload an asset and mint a new record for it."""

    async def upload_and_mint(
        self,
        asset: bytes,
        filename: str = "image",
        content_type: str = "application/octet-stream",
        prev: str | None = None,
        extra: tuple[str, bytes] | None = None,
        fields: dict[str, str] | None = None,
    ) -> MintResult:
        if not asset:
            raise ValueError("asset is required")
        form = aiohttp.FormData()
        if prev:
            form.add_field("prev", prev)
        for name, value in (fields or {}).items():
            form.add_field(name, str(value))
        form.add_field("image", asset, filename=filename, content_type=content_type)
        if extra is not None:
            extra_name, extra_bytes = extra
            form.add_field("extraFile", extra_bytes, filename=extra_name,
                           content_type="application/octet-stream")

        body = await self._request("POST", "/upload-and-mint", data=form)
        if body.get("error"):
            raise ServiceError(str(body["error"]))
        mint = body.get("mint")
        if not isinstance(mint, str) or not mint:
            raise TransportError("upload service returned no mint identifier")
        logger.info(f"Minted {mint}")
        return MintResult(mint=mint, explorer_link=body.get("explorerLink"), raw=body)
