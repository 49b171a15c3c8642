"""Helpers for interacting with Google Cloud Storage."""

from __future__ import annotations

import logging
from datetime import timedelta
from pathlib import Path

from google.cloud import storage
from google.oauth2 import service_account

from ..config import Settings

logger = logging.getLogger(__name__)

_clients: dict[tuple[str | None, str], storage.Client] = {}


def _credentials_path(settings: Settings) -> Path:
    return settings.resolve_path(
        Path(settings.google_application_credentials).expanduser()
    )


def load_credentials(settings: Settings) -> service_account.Credentials | None:
    """Return service-account credentials, or ``None`` when unavailable."""

    path = _credentials_path(settings)
    try:
        if not path.exists():
            return None
        return service_account.Credentials.from_service_account_file(str(path))
    except (OSError, ValueError) as exc:
        logger.debug("Could not load GCS credentials from %s: %s", path, exc)
        return None


def is_gcs_available(settings: Settings) -> bool:
    """Check if GCS credentials are available without raising errors."""

    return _credentials_path(settings).exists()


def get_client(settings: Settings) -> storage.Client:
    """Return a cached Storage client for the configured project."""

    key = (settings.gcp_project_id, str(_credentials_path(settings)))
    client = _clients.get(key)
    if client is None:
        credentials = load_credentials(settings)
        if credentials is None:
            raise RuntimeError(
                "GCS credentials not found. Please configure GOOGLE_APPLICATION_CREDENTIALS "
                "with a valid service account JSON file."
            )
        client = storage.Client(
            project=settings.gcp_project_id or credentials.project_id,
            credentials=credentials,
        )
        _clients[key] = client
    return client


def upload_and_sign(
    settings: Settings,
    blob_name: str,
    data: bytes,
    *,
    content_type: str,
    expires_delta: timedelta,
) -> str:
    """Upload bytes to the configured bucket and return a signed GET URL."""

    bucket = get_client(settings).bucket(settings.gcs_bucket_name)
    blob = bucket.blob(blob_name)
    # Atomic create: never overwrite an existing object
    blob.upload_from_string(
        data,
        content_type=content_type,
        if_generation_match=0,
    )
    return blob.generate_signed_url(
        version="v4",
        expiration=expires_delta,
        method="GET",
    )


__all__ = ["get_client", "is_gcs_available", "load_credentials", "upload_and_sign"]
