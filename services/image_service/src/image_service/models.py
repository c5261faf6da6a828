from sqlalchemy import LargeBinary, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from .db import Base


class StoredImage(Base):
    __tablename__ = "images"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    image: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    mime_type: Mapped[str] = mapped_column(Text, nullable=False, default="application/octet-stream")
    hash: Mapped[str] = mapped_column(String, nullable=False)

    # колонки добавлены позже, в старых строках NULL
    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
