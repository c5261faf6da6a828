"""Хранилище картинок поверх одной таблицы ``images``.

``BlobStore`` оборачивает сессию SQLAlchemy, открытую на время одного
запроса. Хеш всегда считает вызывающий код: стор его только сохраняет.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, NamedTuple

from sqlalchemy import delete, func, inspect, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .db import Base
from .errors import StoreError
from .models import StoredImage
from .schemas import ImageMetadata

logger = logging.getLogger(__name__)

DEFAULT_NAME = "Unknown"
DEFAULT_DESCRIPTION = "No description"

# колонки, которых нет в самых старых версиях таблицы
_LATE_COLUMNS = ("name", "description")


class ImageBlob(NamedTuple):
    data: bytes
    mime_type: str
    hash: str


def image_url(image_id: str) -> str:
    return f"/api/image/{image_id}"


def _metadata(image_id: str, name: str | None, description: str | None) -> ImageMetadata:
    return ImageMetadata(
        id=image_id,
        url=image_url(image_id),
        name=name if name is not None else DEFAULT_NAME,
        description=description if description is not None else DEFAULT_DESCRIPTION,
    )


_META_COLUMNS = (StoredImage.id, StoredImage.name, StoredImage.description)


class BlobStore:
    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def _guard(self, op: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Store operation %s failed", op)
            raise StoreError(f"{op} failed: {e}") from e

    def initialize(self) -> None:
        with self._guard("initialize"):
            conn = self.db.connection()
            Base.metadata.create_all(bind=conn)
            existing = {c["name"] for c in inspect(conn).get_columns(StoredImage.__tablename__)}
            for column in _LATE_COLUMNS:
                if column not in existing:
                    logger.info("Adding missing column images.%s", column)
                    self.db.execute(text(f"ALTER TABLE images ADD COLUMN {column} TEXT"))
            self.db.commit()

    def insert(
        self,
        image_id: str,
        data: bytes,
        mime_type: str,
        hash: str,
        name: str,
        description: str,
    ) -> None:
        with self._guard("insert"):
            self.db.add(
                StoredImage(
                    id=image_id,
                    image=data,
                    mime_type=mime_type,
                    hash=hash,
                    name=name,
                    description=description,
                )
            )
            self.db.commit()
        logger.info("Stored image %s (%d bytes, sha256=%s)", image_id, len(data), hash)

    def fetch_bytes(self, image_id: str) -> ImageBlob | None:
        with self._guard("fetch_bytes"):
            row = self.db.execute(
                select(StoredImage.image, StoredImage.mime_type, StoredImage.hash).where(StoredImage.id == image_id)
            ).one_or_none()
        if row is None:
            return None
        return ImageBlob(data=row.image, mime_type=row.mime_type, hash=row.hash)

    def fetch_metadata(self, image_id: str) -> ImageMetadata | None:
        with self._guard("fetch_metadata"):
            row = self.db.execute(select(*_META_COLUMNS).where(StoredImage.id == image_id)).one_or_none()
        return _metadata(*row) if row is not None else None

    def fetch_random(self) -> ImageMetadata | None:
        # ORDER BY random() сортирует всю таблицу: O(n)
        with self._guard("fetch_random"):
            row = self.db.execute(select(*_META_COLUMNS).order_by(func.random()).limit(1)).one_or_none()
        return _metadata(*row) if row is not None else None

    def list_all(self) -> list[ImageMetadata]:
        with self._guard("list_all"):
            rows = self.db.execute(select(*_META_COLUMNS)).all()
        return [_metadata(*r) for r in rows]

    def update(
        self,
        image_id: str,
        data: bytes | None = None,
        mime_type: str | None = None,
        hash: str | None = None,
        *,
        name: str,
        description: str,
    ) -> bool:
        values: dict[str, object] = {"name": name, "description": description}
        if data is not None:
            values["image"] = data
        if mime_type is not None:
            values["mime_type"] = mime_type
        if hash is not None:
            values["hash"] = hash

        with self._guard("update"):
            result = self.db.execute(
                update(StoredImage).where(StoredImage.id == image_id).values(**values),
                execution_options={"synchronize_session": False},
            )
            self.db.commit()
        updated = result.rowcount > 0
        if updated:
            logger.info("Updated image %s (fields: %s)", image_id, ", ".join(sorted(values)))
        return updated

    def delete(self, image_id: str) -> bool:
        # один DELETE: при гонке двух удалений успех получит только один
        with self._guard("delete"):
            result = self.db.execute(
                delete(StoredImage).where(StoredImage.id == image_id),
                execution_options={"synchronize_session": False},
            )
            self.db.commit()
        deleted = result.rowcount > 0
        if deleted:
            logger.info("Deleted image %s", image_id)
        return deleted
