"""Document service - upload, list, fetch and delete over the store and the disk.

Upload writes the file first and inserts the row only after the write is
confirmed. If the insert fails the file is removed again. Delete flushes the
row removal and moves the file to a tombstone name, then commits. The file
is unlinked only after the commit; if the commit fails the file is moved
back. Fetch and delete hold the per-id lock.
"""
import asyncio
import logging
from http import HTTPStatus

from sqlalchemy import desc, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from docstore.config import Settings
from docstore.models.document import Document
from docstore.services.file_storage import FileStorageService, generate_storage_name
from docstore.services.locks import KeyedLock

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"


class DocumentServiceError(Exception):
    status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class DocumentValidationError(DocumentServiceError):
    status_code = HTTPStatus.BAD_REQUEST


class DocumentNotFoundError(DocumentServiceError):
    status_code = HTTPStatus.NOT_FOUND


class DocumentPersistenceError(DocumentServiceError):
    status_code = HTTPStatus.INTERNAL_SERVER_ERROR


class DocumentService:
    def __init__(
        self,
        session: AsyncSession,
        storage: FileStorageService,
        locks: KeyedLock,
        settings: Settings,
    ) -> None:
        self.session = session
        self.storage = storage
        self.locks = locks
        self.max_upload_bytes = settings.MAX_UPLOAD_BYTES

    def validate_upload(self, original_name: str | None, content_type: str | None, size: int) -> None:
        """Reject a payload before anything touches the disk or the store."""
        if not original_name:
            raise DocumentValidationError("No file uploaded")
        if content_type != PDF_CONTENT_TYPE:
            raise DocumentValidationError(
                "Only PDF files are allowed",
                status_code=HTTPStatus.UNSUPPORTED_MEDIA_TYPE,
            )
        if size > self.max_upload_bytes:
            limit_mb = self.max_upload_bytes // (1024 * 1024)
            raise DocumentValidationError(f"File size too large. Maximum size is {limit_mb}MB")

    async def upload(self, contents: bytes, content_type: str | None, original_name: str | None) -> Document:
        self.validate_upload(original_name, content_type, len(contents))

        storage_name = generate_storage_name(original_name)
        try:
            filepath, filesize = await self.storage.save(contents, storage_name)
        except (OSError, asyncio.TimeoutError) as e:
            raise DocumentPersistenceError("Failed to upload file") from e

        document = Document(
            filename=storage_name,
            original_name=original_name,
            filepath=filepath,
            filesize=filesize,
        )
        try:
            self.session.add(document)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.exception("Database error while saving metadata for %s", storage_name)
            await self.storage.discard(filepath)
            raise DocumentPersistenceError("Failed to save document metadata") from e

        logger.info("Stored document %s as %s (%d bytes)", document.id, storage_name, filesize)
        return document

    async def list_documents(self) -> list[Document]:
        """All documents, newest first."""
        query = select(Document).order_by(desc(Document.created_at), desc(Document.id))
        try:
            result = await self.session.execute(query)
        except SQLAlchemyError as e:
            logger.exception("Database error while listing documents")
            raise DocumentPersistenceError("Failed to retrieve documents") from e
        return list(result.scalars().all())

    async def _get(self, document_id: int) -> Document:
        try:
            document = await self.session.get(Document, document_id)
        except SQLAlchemyError as e:
            logger.exception("Database error while loading document %s", document_id)
            raise DocumentPersistenceError("Failed to retrieve document") from e
        if document is None:
            logger.warning("Document %s not found", document_id)
            raise DocumentNotFoundError("Document not found")
        return document

    async def open_for_download(self, document_id: int) -> tuple[Document, object, int]:
        """Open the document's file under the id lock. Returns (record, handle, size).

        The caller owns the handle. Once it is open, a later delete cannot
        take the bytes away from an in-flight download.
        """
        async with self.locks.hold(document_id):
            document = await self._get(document_id)
            try:
                handle, size = await self.storage.open_read(document.filepath)
            except FileNotFoundError:
                logger.warning("File for document %s missing at %s", document_id, document.filepath)
                raise DocumentNotFoundError("File not found on server")
            except (OSError, asyncio.TimeoutError) as e:
                logger.exception("Failed to open file for document %s", document_id)
                raise DocumentPersistenceError("Failed to retrieve document") from e
            return document, handle, size

    async def delete(self, document_id: int) -> None:
        async with self.locks.hold(document_id):
            document = await self._get(document_id)
            filepath = document.filepath
            try:
                await self.session.delete(document)
                await self.session.flush()
            except SQLAlchemyError as e:
                await self.session.rollback()
                logger.exception("Database error while deleting document %s", document_id)
                raise DocumentPersistenceError("Failed to delete document") from e

            try:
                tombstone = await self.storage.stage_delete(filepath)
            except (OSError, asyncio.TimeoutError) as e:
                await self.session.rollback()
                logger.exception("Failed to move file %s aside; keeping record %s", filepath, document_id)
                raise DocumentPersistenceError("Failed to delete document") from e

            try:
                await self.session.commit()
            except SQLAlchemyError as e:
                await self.session.rollback()
                logger.exception("Database error while committing delete of document %s", document_id)
                if tombstone is not None:
                    await self._restore(tombstone, filepath, document_id)
                raise DocumentPersistenceError("Failed to delete document") from e

            if tombstone is not None:
                await self.storage.discard(tombstone)

        logger.info("Deleted document %s", document_id)

    async def _restore(self, tombstone: str, filepath: str, document_id: int) -> None:
        try:
            await self.storage.restore(tombstone, filepath)
        except (OSError, asyncio.TimeoutError):
            logger.exception("Could not restore %s for document %s from %s", filepath, document_id, tombstone)
