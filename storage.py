import logging
import os
import secrets
import time
from typing import Tuple

import gridfs
from gridfs.errors import NoFile
from pymongo.database import Database

import config
from errors import NotFound

log = logging.getLogger(__name__)


def unique_name(file_name: str) -> str:
    """``<ms timestamp>-<random>.<ext>``, keeping the uploaded file's extension."""
    ext = os.path.splitext(file_name)[1].lstrip(".").lower() or "jpg"
    return f"{int(time.time() * 1000)}-{secrets.token_hex(4)}.{ext}"


def public_url(name: str) -> str:
    return f"{config.PUBLIC_BASE_URL}/api/images/{name}"


class ImageStore:
    """Product images kept in a GridFS bucket."""

    def __init__(self, db: Database, bucket: str = config.IMAGE_BUCKET):
        self.bucket_name = bucket
        self.bucket = gridfs.GridFSBucket(db, bucket_name=bucket)

    def upload(self, file_name: str, data: bytes, content_type: str = "image/jpeg") -> dict:
        name = unique_name(file_name)
        self.bucket.upload_from_stream(name, data, metadata={"contentType": content_type, "original_name": file_name})
        log.info("Stored image %s (%d bytes) in %s", name, len(data), self.bucket_name)
        return {"path": name, "url": public_url(name)}

    def open(self, name: str) -> Tuple[bytes, str]:
        try:
            grid_out = self.bucket.open_download_stream_by_name(name)
        except NoFile:
            raise NotFound("Image not found")
        metadata = grid_out.metadata or {}
        return grid_out.read(), metadata.get("contentType", "application/octet-stream")
