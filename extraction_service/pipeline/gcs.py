from __future__ import annotations

import logging
import re
import uuid

from google.api_core.exceptions import NotFound
from google.cloud import storage

from extraction_service.pipeline.types import StagingLocation

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def gs_uri(bucket: str, name: str) -> str:
    return f"gs://{bucket}/{name}"


def upload_text(client: storage.Client, bucket: str, name: str, text: str, *, content_type: str = "text/plain") -> None:
    b = client.bucket(bucket)
    blob = b.blob(name)
    blob.upload_from_string(text, content_type=content_type)


def safe_object_name(file_name: str) -> str:
    cleaned = _UNSAFE.sub("_", file_name.strip()).strip("._")
    return cleaned or "document"


class GcsStagingStore:
    """Temporary home for documents handed to the async OCR provider.

    Each staged document gets its own ``<prefix><id>/`` folder holding the input
    object and the provider's output shards, so one delete clears both.
    """

    def __init__(self, *, client: storage.Client, bucket: str, prefix: str = "extract-staging/") -> None:
        if prefix and not prefix.endswith("/"):
            prefix += "/"
        self._client = client
        self._bucket = bucket
        self._prefix = prefix

    def put(self, *, data: bytes, file_name: str, mime_type: str) -> StagingLocation:
        folder = f"{self._prefix}{uuid.uuid4().hex}/"
        loc = StagingLocation(
            bucket=self._bucket,
            object_name=f"{folder}{safe_object_name(file_name)}",
            output_prefix=f"{folder}output/",
        )
        blob = self._client.bucket(self._bucket).blob(loc.object_name)
        blob.upload_from_string(data, content_type=mime_type)
        logger.info("Staged %d bytes at %s", len(data), loc.uri)
        return loc

    def delete(self, location: StagingLocation) -> None:
        """Remove the staged object and any output shards; missing objects are fine."""
        bucket = self._client.bucket(location.bucket)
        try:
            bucket.blob(location.object_name).delete()
        except NotFound:
            logger.debug("Staged object already gone: %s", location.uri)

        for blob in self._client.list_blobs(location.bucket, prefix=location.output_prefix):
            try:
                blob.delete()
            except NotFound:
                continue
