"""Object storage on Google Cloud Storage.

Uploads archived files to a bucket, makes them public and returns the
public HTTPS URL. The google-cloud-storage client is blocking, so uploads
run in ``asyncio.to_thread``.

Credentials, first match wins:
  1. explicit service-account client email + private key (from .env),
  2. the key file named by GOOGLE_APPLICATION_CREDENTIALS,
  3. application-default credentials.
"""

from __future__ import annotations

import asyncio
import logging
import os

from google.auth import default as google_auth_default
from google.cloud import storage
from google.oauth2 import service_account

logger = logging.getLogger(__name__)

_SCOPES = ["https://www.googleapis.com/auth/cloud-platform"]
_TOKEN_URI = "https://oauth2.googleapis.com/token"


class StorageError(Exception):
    """Upload to object storage failed."""


def public_url(bucket: str, name: str) -> str:
    return f"https://storage.googleapis.com/{bucket}/{name}"


def build_credentials(client_email: str = "", private_key: str = ""):  # type: ignore[no-untyped-def]
    if client_email and private_key:
        info = {
            "type": "service_account",
            "client_email": client_email,
            # .env files usually carry the PEM with escaped newlines
            "private_key": private_key.replace("\\n", "\n"),
            "token_uri": _TOKEN_URI,
        }
        return service_account.Credentials.from_service_account_info(
            info, scopes=_SCOPES
        )
    key_path = os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")
    if key_path and os.path.exists(key_path):
        return service_account.Credentials.from_service_account_file(
            key_path, scopes=_SCOPES
        )
    creds, _ = google_auth_default(scopes=_SCOPES)
    return creds


class GcsStorage:
    """Public-object uploader for one bucket."""

    def __init__(
        self,
        bucket_name: str,
        *,
        project: str = "",
        client_email: str = "",
        private_key: str = "",
    ) -> None:
        if not bucket_name:
            raise RuntimeError("GOOGLE_CLOUD_BUCKET_NAME is not set")
        self.bucket_name = bucket_name
        self._client = storage.Client(
            project=project or None,
            credentials=build_credentials(client_email, private_key),
        )

    def _upload_sync(self, data: bytes, name: str, mimetype: str) -> str:
        bucket = self._client.bucket(self.bucket_name)
        blob = bucket.blob(name)
        blob.upload_from_string(data, content_type=mimetype)
        blob.make_public()
        return public_url(self.bucket_name, name)

    async def store(self, data: bytes, name: str, mimetype: str) -> str:
        """Upload ``data`` as ``name`` and return its public URL.

        Raises StorageError on any failure.
        """
        try:
            url = await asyncio.to_thread(self._upload_sync, data, name, mimetype)
        except Exception as e:
            raise StorageError(f"Upload of {name} failed: {e}") from e
        logger.info("Uploaded %s (%d bytes) to gs://%s", name, len(data), self.bucket_name)
        return url
