"""Shared fixtures: an app wired to a temp upload dir and a temp SQLite file."""
from __future__ import annotations

from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from docstore.config import Settings
from docstore.main import create_app

PDF_BYTES = b"%PDF-1.4\n1 0 obj << /Type /Catalog >> endobj\ntrailer << /Root 1 0 R >>\n%%EOF\n"


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'documents.db'}",
        UPLOAD_DIR=str(tmp_path / "uploads"),
        MAX_UPLOAD_BYTES=10 * 1024 * 1024,
        IO_TIMEOUT_SECONDS=5.0,
        _env_file=None,
    )


@pytest_asyncio.fixture
async def app(settings):
    app = create_app(settings)
    async with app.router.lifespan_context(app):
        yield app


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


@pytest.fixture
def upload_dir(settings) -> Path:
    return Path(settings.UPLOAD_DIR)


async def upload_pdf(client: AsyncClient, name: str = "report.pdf", data: bytes = PDF_BYTES, content_type: str = "application/pdf"):
    return await client.post("/documents/upload", files={"file": (name, data, content_type)})
