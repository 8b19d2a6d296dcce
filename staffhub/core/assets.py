"""Employee QR codes and the object store they are uploaded to."""
from __future__ import annotations
import io
import logging

import requests
import segno

from staffhub.core.errors import UnexpectedError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10
PNG_MIME_TYPE = "image/png"
USER_BUCKET = "user"


class AssetUploadError(UnexpectedError):
    pass


def render_qr_png(payload: str, scale: int = 10, border: int = 4) -> bytes:
    """Render ``payload`` as a high error-correction QR code PNG."""
    qr = segno.make(payload, error="h")
    buffer = io.BytesIO()
    qr.save(buffer, kind="png", scale=scale, border=border)
    return buffer.getvalue()


class HttpAssetStore:
    """Object store reachable with plain HTTP PUT (S3-compatible presigned or public buckets).

    Objects land at ``<storage_url>/<bucket>/<name>`` and are served from
    ``<public_url><name>``.
    """

    def __init__(self, storage_url: str, public_url: str, buckets: dict | None = None):
        self.storage_url = storage_url.rstrip("/")
        self.public_base = public_url if public_url.endswith("/") else public_url + "/"
        self.buckets = buckets or {USER_BUCKET: USER_BUCKET}

    def upload(self, bucket_kind: str, data: bytes, name: str, mime_type: str) -> None:
        bucket = self.buckets.get(bucket_kind)
        if not bucket:
            logger.error("No bucket configured for %s", bucket_kind)
            raise AssetUploadError()
        url = f"{self.storage_url}/{bucket}/{name}"
        logger.info("Uploading file: %s", name)
        try:
            resp = requests.put(url, data=data, headers={"Content-Type": mime_type}, timeout=REQUEST_TIMEOUT)
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.error("Error uploading file %s: %s", name, exc)
            raise AssetUploadError() from exc
        logger.info("File uploaded successfully: %s to bucket: %s", name, bucket)

    def public_url(self, name: str) -> str:
        return f"{self.public_base}{name}"

    @classmethod
    def from_config(cls, cfg) -> "HttpAssetStore":
        return cls(cfg.asset_storage_url, cfg.asset_public_url)
