from __future__ import annotations

import asyncio
import os

import aiofiles.os
import pytest
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import PDF_BYTES
from docstore.models import Document
from docstore.services.document_service import (
    DocumentNotFoundError,
    DocumentPersistenceError,
    DocumentService,
    DocumentValidationError,
)
from docstore.services.file_storage import FileStorageService, iter_file


def _service(app, session, storage=None) -> DocumentService:
    state = app.state
    return DocumentService(session, storage or state.storage, state.locks, state.settings)


async def _count(app) -> int:
    async with app.state.session_factory() as session:
        return len(await _service(app, session).list_documents())


@pytest.mark.asyncio
async def test_failed_insert_removes_written_file(app, upload_dir, monkeypatch):
    async def failing_commit(self):
        raise SQLAlchemyError("insert failed")

    monkeypatch.setattr(AsyncSession, "commit", failing_commit)
    async with app.state.session_factory() as session:
        service = _service(app, session)

        with pytest.raises(DocumentPersistenceError) as exc_info:
            await service.upload(PDF_BYTES, "application/pdf", "lost.pdf")

    assert exc_info.value.status_code == 500
    assert exc_info.value.message == "Failed to save document metadata"
    assert os.listdir(upload_dir) == []
    assert await _count(app) == 0


@pytest.mark.asyncio
async def test_failed_write_inserts_nothing(app, tmp_path):
    broken = FileStorageService(tmp_path / "does-not-exist", io_timeout=1.0)
    async with app.state.session_factory() as session:
        service = _service(app, session, storage=broken)

        with pytest.raises(DocumentPersistenceError):
            await service.upload(PDF_BYTES, "application/pdf", "report.pdf")

    assert await _count(app) == 0


@pytest.mark.asyncio
async def test_validation_happens_before_write(app, upload_dir):
    async with app.state.session_factory() as session:
        service = _service(app, session)

        with pytest.raises(DocumentValidationError) as missing:
            await service.upload(PDF_BYTES, "application/pdf", None)
        with pytest.raises(DocumentValidationError) as wrong_type:
            await service.upload(PDF_BYTES, "image/png", "scan.png")

    assert missing.value.status_code == 400
    assert wrong_type.value.status_code == 415
    assert os.listdir(upload_dir) == []


@pytest.mark.asyncio
async def test_failed_file_removal_keeps_record(app, upload_dir, monkeypatch):
    async with app.state.session_factory() as session:
        document = await _service(app, session).upload(PDF_BYTES, "application/pdf", "keep.pdf")
        doc_id, filepath = document.id, document.filepath

    async def failing_delete(path):
        raise PermissionError(path)

    monkeypatch.setattr(app.state.storage, "stage_delete", failing_delete)
    async with app.state.session_factory() as session:
        with pytest.raises(DocumentPersistenceError):
            await _service(app, session).delete(doc_id)

    async with app.state.session_factory() as session:
        assert await session.get(Document, doc_id) is not None
    assert os.path.exists(filepath)


@pytest.mark.asyncio
async def test_disk_timeout_is_persistence_error(app, monkeypatch):
    async with app.state.session_factory() as session:
        document = await _service(app, session).upload(PDF_BYTES, "application/pdf", "slow.pdf")
        doc_id = document.id

    slow_storage = FileStorageService(app.state.storage.base_path, io_timeout=0.2)

    async def hanging_rename(src, dst):
        await asyncio.sleep(10)

    monkeypatch.setattr(aiofiles.os, "rename", hanging_rename)
    async with app.state.session_factory() as session:
        with pytest.raises(DocumentPersistenceError):
            await _service(app, session, storage=slow_storage).delete(doc_id)

    assert await _count(app) == 1


@pytest.mark.asyncio
async def test_concurrent_deletes_of_same_id(app):
    async with app.state.session_factory() as session:
        document = await _service(app, session).upload(PDF_BYTES, "application/pdf", "race.pdf")
        doc_id = document.id

    async def delete_once():
        async with app.state.session_factory() as session:
            await _service(app, session).delete(doc_id)

    results = await asyncio.gather(delete_once(), delete_once(), return_exceptions=True)

    assert results.count(None) == 1
    assert sum(isinstance(r, DocumentNotFoundError) for r in results) == 1
    assert await _count(app) == 0
    assert len(app.state.locks) == 0


@pytest.mark.asyncio
async def test_open_for_download_unknown_id(app):
    async with app.state.session_factory() as session:
        with pytest.raises(DocumentNotFoundError) as exc_info:
            await _service(app, session).open_for_download(42)

    assert exc_info.value.message == "Document not found"


@pytest.mark.asyncio
async def test_failed_delete_commit_restores_file(app, upload_dir, monkeypatch):
    async with app.state.session_factory() as session:
        document = await _service(app, session).upload(PDF_BYTES, "application/pdf", "restore.pdf")
        doc_id, filepath = document.id, document.filepath

    async def failing_commit(self):
        raise SQLAlchemyError("commit failed")

    monkeypatch.setattr(AsyncSession, "commit", failing_commit)
    async with app.state.session_factory() as session:
        with pytest.raises(DocumentPersistenceError):
            await _service(app, session).delete(doc_id)
    monkeypatch.undo()

    async with app.state.session_factory() as session:
        assert await session.get(Document, doc_id) is not None
    with open(filepath, "rb") as f:
        assert f.read() == PDF_BYTES
    assert os.listdir(upload_dir) == [os.path.basename(filepath)]


@pytest.mark.asyncio
async def test_delete_leaves_no_tombstone(app, upload_dir):
    async with app.state.session_factory() as session:
        document = await _service(app, session).upload(PDF_BYTES, "application/pdf", "gone.pdf")
        await _service(app, session).delete(document.id)

    assert os.listdir(upload_dir) == []


@pytest.mark.asyncio
async def test_open_download_survives_concurrent_delete(app):
    async with app.state.session_factory() as session:
        document = await _service(app, session).upload(PDF_BYTES, "application/pdf", "stream.pdf")
        doc_id = document.id

    async with app.state.session_factory() as session:
        _, handle, size = await _service(app, session).open_for_download(doc_id)

    async with app.state.session_factory() as session:
        await _service(app, session).delete(doc_id)

    chunks = [chunk async for chunk in iter_file(handle, chunk_size=8)]
    assert size == len(PDF_BYTES)
    assert b"".join(chunks) == PDF_BYTES


@pytest.mark.asyncio
async def test_storage_name_collision_keeps_existing_file(app, upload_dir, monkeypatch):
    existing = upload_dir / "1-123456789-taken.pdf"
    existing.write_bytes(b"someone else's bytes")
    monkeypatch.setattr(
        "docstore.services.document_service.generate_storage_name",
        lambda original_name: existing.name,
    )

    async with app.state.session_factory() as session:
        with pytest.raises(DocumentPersistenceError):
            await _service(app, session).upload(PDF_BYTES, "application/pdf", "taken.pdf")

    assert existing.read_bytes() == b"someone else's bytes"
    assert await _count(app) == 0
