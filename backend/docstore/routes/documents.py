"""Documents API routes."""
from typing import Optional

from fastapi import APIRouter, Depends, Request, UploadFile, File as FastAPIFile
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from docstore.database import get_db
from docstore.schemas.common import MessageResponse
from docstore.schemas.document import DocumentListResponse, DocumentResponse, DocumentUploadResponse
from docstore.services.document_service import PDF_CONTENT_TYPE, DocumentService, DocumentValidationError
from docstore.services.file_storage import iter_file

router = APIRouter(prefix="/documents", tags=["documents"])


def get_document_service(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> DocumentService:
    state = request.app.state
    return DocumentService(db, state.storage, state.locks, state.settings)


@router.post("/upload", response_model=DocumentUploadResponse, status_code=201)
async def upload_document(
    file: Optional[UploadFile] = FastAPIFile(None),
    service: DocumentService = Depends(get_document_service),
):
    """Upload a PDF and create its document record."""
    if file is None:
        raise DocumentValidationError("No file uploaded")

    # One byte past the limit is enough to tell an oversized upload apart.
    contents = await file.read(service.max_upload_bytes + 1)
    document = await service.upload(contents, file.content_type, file.filename)

    return DocumentUploadResponse(
        message="File uploaded successfully",
        document=DocumentResponse.model_validate(document),
    )


@router.get("", response_model=DocumentListResponse)
async def list_documents(service: DocumentService = Depends(get_document_service)):
    """List all documents, newest first."""
    documents = await service.list_documents()
    return DocumentListResponse(
        documents=[DocumentResponse.model_validate(d) for d in documents],
    )


@router.get("/{document_id}")
async def download_document(
    document_id: int,
    service: DocumentService = Depends(get_document_service),
):
    """Stream a stored PDF back under its stored filename."""
    document, handle, size = await service.open_for_download(document_id)
    return StreamingResponse(
        iter_file(handle),
        media_type=PDF_CONTENT_TYPE,
        headers={
            "Content-Disposition": f'attachment; filename="{document.filename}"',
            "Content-Length": str(size),
        },
    )


@router.delete("/{document_id}", response_model=MessageResponse)
async def delete_document(
    document_id: int,
    service: DocumentService = Depends(get_document_service),
):
    """Delete a document file and its record."""
    await service.delete(document_id)
    return MessageResponse(message="Document deleted successfully")
