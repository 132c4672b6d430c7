"""
Tests for fundline_core.services: metadata and upload service clients.
"""

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from fundline_core.errors import ServiceError, TransportError
from fundline_core.services import MetadataClient, MintResult, UploadClient

CHAIN = [
    {"mint": "Mint1", "prev": None, "name": "first"},
    {"mint": "Mint2", "prev": "Mint1", "name": "second"},
]


def _services_app(received):
    async def chain(request):
        ident = request.query.get("id", "")
        if ident == "missing":
            return web.json_response({"success": False, "error": "unknown id"})
        if ident == "broken":
            return web.json_response({"error": "database offline"}, status=500)
        return web.json_response({"success": True, "chain": CHAIN})

    async def upload(request):
        form = await request.post()
        image = form.get("image")
        if image is None:
            return web.json_response({"error": "image is required"}, status=400)
        extra = form.get("extraFile")
        received.append({
            "prev": form.get("prev"),
            "name": form.get("name"),
            "image_name": image.filename,
            "image_bytes": image.file.read(),
            "extra_name": extra.filename if extra is not None else None,
        })
        if form.get("name") == "reject":
            return web.json_response({"error": "mint failed"})
        return web.json_response({
            "mint": "NewMint111",
            "explorerLink": "https://explorer.example/address/NewMint111",
        })

    app = web.Application()
    app.router.add_get("/chain", chain)
    app.router.add_post("/upload-and-mint", upload)
    return app


@pytest.mark.asyncio
class TestMetadataClient:

    async def test_fetch_chain(self):
        async with TestServer(_services_app([])) as server:
            async with MetadataClient(str(server.make_url(""))) as client:
                chain = await client.fetch_chain("Mint2")
        assert chain == CHAIN

    async def test_unsuccessful_lookup(self):
        async with TestServer(_services_app([])) as server:
            async with MetadataClient(str(server.make_url(""))) as client:
                with pytest.raises(ServiceError) as excinfo:
                    await client.fetch_chain("missing")
        assert "unknown id" in str(excinfo.value)

    async def test_http_error_uses_body_message(self):
        async with TestServer(_services_app([])) as server:
            async with MetadataClient(str(server.make_url(""))) as client:
                with pytest.raises(ServiceError) as excinfo:
                    await client.fetch_chain("broken")
        assert "database offline" in str(excinfo.value)

    async def test_identifier_required(self):
        async with MetadataClient("http://localhost:1") as client:
            with pytest.raises(ValueError):
                await client.fetch_chain("")

    async def test_unreachable_service(self):
        async with MetadataClient("http://127.0.0.1:1", timeout=2.0) as client:
            with pytest.raises(TransportError):
                await client.fetch_chain("Mint1")


@pytest.mark.asyncio
class TestUploadClient:

    async def test_upload_and_mint(self):
        received = []
        async with TestServer(_services_app(received)) as server:
            async with UploadClient(str(server.make_url(""))) as client:
                result = await client.upload_and_mint(
                    b"\x89PNG fake image",
                    filename="cat.png",
                    content_type="image/png",
                    prev="Mint2",
                    extra=("notes.txt", b"hello"),
                    fields={"name": "cat"},
                )
            assert result == MintResult(
                mint="NewMint111",
                explorer_link="https://explorer.example/address/NewMint111",
            )
        assert received == [{
            "prev": "Mint2",
            "name": "cat",
            "image_name": "cat.png",
            "image_bytes": b"\x89PNG fake image",
            "extra_name": "notes.txt",
        }]

    async def test_error_payload(self):
        async with TestServer(_services_app([])) as server:
            async with UploadClient(str(server.make_url(""))) as client:
                with pytest.raises(ServiceError):
                    await client.upload_and_mint(b"data", fields={"name": "reject"})

    async def test_empty_asset(self):
        async with UploadClient("http://localhost:1") as client:
            with pytest.raises(ValueError):
                await client.upload_and_mint(b"")
