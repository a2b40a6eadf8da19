"""Document model - stored file metadata (actual bytes live in the upload directory)."""
from sqlalchemy import CheckConstraint, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from docstore.models.base import Base, CreatedAtMixin


class Document(Base, CreatedAtMixin):
    __tablename__ = "documents"
    __table_args__ = (
        CheckConstraint("filesize >= 0", name="ck_documents_filesize_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    filename: Mapped[str] = mapped_column(String(500), nullable=False, unique=True)
    original_name: Mapped[str] = mapped_column(String(500), nullable=False)
    filepath: Mapped[str] = mapped_column(String(1000), nullable=False)
    filesize: Mapped[int] = mapped_column(Integer, nullable=False)

    def __repr__(self) -> str:
        return f"<Document id={self.id} filename={self.filename!r} filesize={self.filesize}>"
