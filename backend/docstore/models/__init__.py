"""Import all models so SQLAlchemy metadata knows about them."""
from docstore.models.base import Base
from docstore.models.document import Document

__all__ = ["Base", "Document"]
