import logging
from pathlib import Path

from fastapi import Depends, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from .auth import require_auth
from .config import settings
from .db import SessionLocal, get_db
from .errors import AuthError, ImageNotFound, ImageServiceError, NoImages, UpdateFailed
from .hashing import content_hash, new_image_id
from .multipart import ImageForm, ingest
from .schemas import ImageMetadata, UploadResponse
from .storage import BlobStore

logger = logging.getLogger(__name__)

app = FastAPI(title="Image Hosting Service", version="1.0.0")

AUTH_CHALLENGE = {"WWW-Authenticate": 'Basic realm="Image Upload"'}


def get_store(db: Session = Depends(get_db)) -> BlobStore:
    return BlobStore(db)


def etag_matches(if_none_match: str | None, etag: str) -> bool:
    if not if_none_match:
        return False
    for tag in if_none_match.split(","):
        tag = tag.strip()
        if tag == "*":
            return True
        if tag.startswith("W/"):
            tag = tag[2:]
        if tag.strip('"') == etag:
            return True
    return False


@app.on_event("startup")
def _startup():
    logging.basicConfig(level=settings.log_level)
    if settings.database_url is None:
        Path(settings.data_dir).mkdir(parents=True, exist_ok=True)
    db = SessionLocal()
    try:
        BlobStore(db).initialize()
    finally:
        db.close()
    logger.info("Image store ready at %s", settings.db_url)


@app.exception_handler(ImageServiceError)
async def _service_error(request: Request, exc: ImageServiceError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    headers = AUTH_CHALLENGE if isinstance(exc, AuthError) else None
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message}, headers=headers)


@app.get("/health")
def health():
    return {"status": "ok"}


def _create_image(store: BlobStore, form: ImageForm) -> UploadResponse:
    image_id = new_image_id()
    image_hash = content_hash(form.image)
    store.insert(image_id, form.image, form.mime_type, image_hash, form.name, form.description)
    return UploadResponse(id=image_id, hash=image_hash)


@app.post("/api/images", status_code=201, response_model=UploadResponse, dependencies=[Depends(require_auth)])
async def upload_image(request: Request, store: BlobStore = Depends(get_store)):
    form = ingest(await request.body(), request.headers.get("content-type"))
    form.require_complete()
    # запросы к базе блокирующие, уводим их с event loop
    return await run_in_threadpool(_create_image, store, form)


@app.api_route("/api/image/{image_id}", methods=["GET", "HEAD"])
def get_image(image_id: str, request: Request, store: BlobStore = Depends(get_store)):
    blob = store.fetch_bytes(image_id)
    if blob is None:
        raise ImageNotFound()

    headers = {"ETag": blob.hash}
    if etag_matches(request.headers.get("if-none-match"), blob.hash):
        return Response(status_code=304, headers=headers)
    return Response(content=blob.data, media_type=blob.mime_type, headers=headers)


@app.get("/api/meta/{image_id}", response_model=ImageMetadata)
def get_image_metadata(image_id: str, store: BlobStore = Depends(get_store)):
    meta = store.fetch_metadata(image_id)
    if meta is None:
        raise ImageNotFound()
    return meta


@app.get("/api/images", response_model=list[ImageMetadata], dependencies=[Depends(require_auth)])
def list_images(store: BlobStore = Depends(get_store)):
    return store.list_all()


def _update_image(store: BlobStore, image_id: str, form: ImageForm) -> ImageMetadata:
    new_hash = content_hash(form.image) if form.image is not None else None

    current = store.fetch_metadata(image_id)
    if current is None:
        raise ImageNotFound()

    # отсутствующие в запросе поля берём из текущих метаданных
    updated = store.update(
        image_id,
        form.image,
        form.mime_type if form.image is not None else None,
        new_hash,
        name=form.name if form.name is not None else current.name,
        description=form.description if form.description is not None else current.description,
    )
    if not updated:
        raise UpdateFailed(f"image {image_id} vanished during update")

    meta = store.fetch_metadata(image_id)
    if meta is None:
        raise UpdateFailed(f"image {image_id} vanished after update")
    return meta


@app.put("/api/image/{image_id}", response_model=ImageMetadata, dependencies=[Depends(require_auth)])
async def update_image(image_id: str, request: Request, store: BlobStore = Depends(get_store)):
    form = ingest(await request.body(), request.headers.get("content-type"))
    form.require_any()
    return await run_in_threadpool(_update_image, store, image_id, form)


@app.delete("/api/image/{image_id}", status_code=204, dependencies=[Depends(require_auth)])
def delete_image(image_id: str, store: BlobStore = Depends(get_store)):
    if not store.delete(image_id):
        raise ImageNotFound()
    return Response(status_code=204)


@app.get("/api/next", response_model=ImageMetadata)
def get_next_image(store: BlobStore = Depends(get_store)):
    meta = store.fetch_random()
    if meta is None:
        raise NoImages()
    return meta


@app.api_route(
    "/{path:path}",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"],
    include_in_schema=False,
)
def not_found(path: str):
    return JSONResponse(status_code=404, content={"detail": "Not Found"})


def run():
    import uvicorn

    uvicorn.run("image_service.main:app", host="0.0.0.0", port=settings.port)
