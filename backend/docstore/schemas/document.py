"""Document request/response schemas."""
from datetime import datetime

from pydantic import BaseModel

from docstore.schemas.common import MessageResponse


class DocumentResponse(BaseModel):
    id: int
    filename: str
    original_name: str
    filesize: int
    created_at: datetime

    model_config = {"from_attributes": True}


class DocumentUploadResponse(MessageResponse):
    document: DocumentResponse


class DocumentListResponse(BaseModel):
    success: bool = True
    documents: list[DocumentResponse]
