import hashlib
import uuid


def new_image_id() -> str:
    # uuid4: 122 случайных бита
    return str(uuid.uuid4())


def content_hash(data: bytes) -> str:
    """sha256 от байтов картинки, lowercase hex."""
    return hashlib.sha256(data).hexdigest()
