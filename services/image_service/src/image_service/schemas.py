from pydantic import BaseModel


class ImageMetadata(BaseModel):
    id: str
    url: str
    name: str
    description: str


class UploadResponse(BaseModel):
    id: str
    hash: str
