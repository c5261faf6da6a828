import base64

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from image_service.config import Settings, get_settings
from image_service.db import get_db, make_engine
from image_service.main import app
from image_service.storage import BlobStore

BOUNDARY = "----image-service-test-7MA4YWxkTrZu0gW"

JPEG_BYTES = bytes([0xFF, 0xD8, 0xFF, 0xE0, 0x00, 0x10, 0x4A, 0x46, 0x49, 0x46, 0x00, 0x01, 0xFF, 0xD9])


def build_multipart(fields, boundary=BOUNDARY):
    """fields: (name, value) или (name, value, content_type)."""
    chunks = []
    for field in fields:
        name, value = field[0], field[1]
        content_type = field[2] if len(field) > 2 else None
        disposition = f'Content-Disposition: form-data; name="{name}"'
        if content_type:
            disposition += f'; filename="{name}.bin"'
        chunks.append(f"--{boundary}\r\n{disposition}\r\n".encode())
        if content_type:
            chunks.append(f"Content-Type: {content_type}\r\n".encode())
        chunks.append(b"\r\n")
        chunks.append(value if isinstance(value, bytes) else value.encode("utf-8"))
        chunks.append(b"\r\n")
    chunks.append(f"--{boundary}--\r\n".encode())
    return b"".join(chunks), f"multipart/form-data; boundary={boundary}"


def basic_auth(username, password):
    token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return {"Authorization": f"Basic {token}"}


@pytest.fixture
def settings():
    return Settings(auth_username="admin", auth_password="s3cret:with:colons")


@pytest.fixture
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'images.db'}")
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    db = factory()
    try:
        BlobStore(db).initialize()
    finally:
        db.close()
    yield factory
    engine.dispose()


@pytest.fixture
def store(session_factory):
    db = session_factory()
    try:
        yield BlobStore(db)
    finally:
        db.close()


@pytest.fixture
def client(session_factory, settings):
    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_settings] = lambda: settings
    # без `with`: startup-хук открыл бы базу из настроек процесса
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth(settings):
    return basic_auth(settings.auth_username, settings.auth_password)


@pytest.fixture
def upload(client, auth):
    def _upload(data=JPEG_BYTES, mime="image/jpeg", name="cat", description="a cat"):
        body, content_type = build_multipart(
            [("image", data, mime), ("name", name), ("description", description)]
        )
        return client.post("/api/images", content=body, headers={**auth, "Content-Type": content_type})

    return _upload
