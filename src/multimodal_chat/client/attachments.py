"""Validation and encoding of image and CSV attachments."""

from __future__ import annotations

import base64
import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Optional
from urllib.parse import urlparse

import httpx

from ..errors import AttachmentFetchError, ValidationError
from .models import ResolvedAttachments

logger = logging.getLogger(__name__)

IMAGE_MAX_BYTES = 5 * 1024 * 1024
TABULAR_MAX_BYTES = 10 * 1024 * 1024
TABULAR_SUFFIX = ".csv"
DEFAULT_TABULAR_NAME = "data.csv"


@dataclass(frozen=True)
class AttachmentLimits:
    image_max_bytes: int = IMAGE_MAX_BYTES
    tabular_max_bytes: int = TABULAR_MAX_BYTES
    tabular_suffix: str = TABULAR_SUFFIX


def _megabytes(size: int) -> str:
    return f"{size / (1024 * 1024):g}MB"


def _existing_file(path: Path) -> Path:
    resolved = path.expanduser()
    if not resolved.is_file():
        raise ValidationError(f"File not found: {path}")
    return resolved


def encode_image(path: Path, limits: AttachmentLimits = AttachmentLimits()) -> str:
    """Validate an image file and return it as a base64 data URL."""

    resolved = _existing_file(path)
    mime_type, _ = mimetypes.guess_type(resolved.name)
    if not mime_type or not mime_type.startswith("image/"):
        raise ValidationError("Please select an image file")
    if resolved.stat().st_size > limits.image_max_bytes:
        raise ValidationError(
            f"Please select an image smaller than {_megabytes(limits.image_max_bytes)}"
        )
    encoded = base64.b64encode(resolved.read_bytes()).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def read_tabular_file(
    path: Path, limits: AttachmentLimits = AttachmentLimits()
) -> tuple[str, str]:
    """Validate a CSV file and return ``(text, file_name)``."""

    if not path.name.lower().endswith(limits.tabular_suffix):
        raise ValidationError(f"Please select a {limits.tabular_suffix} file")
    resolved = _existing_file(path)
    if resolved.stat().st_size > limits.tabular_max_bytes:
        raise ValidationError(
            f"Please select a CSV file smaller than {_megabytes(limits.tabular_max_bytes)}"
        )
    return resolved.read_text(encoding="utf-8", errors="replace"), resolved.name


def validate_tabular_url(url: str) -> str:
    candidate = url.strip()
    parsed = urlparse(candidate)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValidationError(f"Invalid CSV URL: {url}")
    return candidate


def tabular_name_from_url(url: str) -> str:
    name = PurePosixPath(urlparse(url).path).name
    return name or DEFAULT_TABULAR_NAME


async def fetch_tabular_url(
    client: httpx.AsyncClient,
    url: str,
    limits: AttachmentLimits = AttachmentLimits(),
) -> tuple[str, str]:
    """Download CSV text from ``url`` and return ``(text, file_name)``."""

    target = validate_tabular_url(url)
    try:
        response = await client.get(target, follow_redirects=True)
    except httpx.HTTPError as exc:
        logger.warning("CSV download from %s failed: %s", target, exc)
        raise AttachmentFetchError("Could not fetch CSV from the provided URL") from exc

    if response.status_code >= 400:
        logger.warning("CSV download from %s returned %s", target, response.status_code)
        raise AttachmentFetchError("Could not fetch CSV from the provided URL")
    if len(response.content) > limits.tabular_max_bytes:
        raise ValidationError(
            f"Remote CSV is larger than {_megabytes(limits.tabular_max_bytes)}"
        )
    return response.text, tabular_name_from_url(target)


async def resolve_attachments(
    client: httpx.AsyncClient,
    *,
    image_path: Optional[Path] = None,
    tabular_path: Optional[Path] = None,
    tabular_url: Optional[str] = None,
    limits: AttachmentLimits = AttachmentLimits(),
) -> ResolvedAttachments:
    """Turn user-selected attachments into request payloads.

    A local CSV file takes precedence over a CSV URL.
    """

    image_data = encode_image(image_path, limits) if image_path else None

    csv_data: Optional[str] = None
    csv_file_name: Optional[str] = None
    if tabular_path:
        csv_data, csv_file_name = read_tabular_file(tabular_path, limits)
    elif tabular_url and tabular_url.strip():
        csv_data, csv_file_name = await fetch_tabular_url(client, tabular_url, limits)

    return ResolvedAttachments(
        image_data=image_data,
        csv_data=csv_data,
        csv_file_name=csv_file_name,
    )


__all__ = [
    "AttachmentLimits",
    "IMAGE_MAX_BYTES",
    "TABULAR_MAX_BYTES",
    "encode_image",
    "fetch_tabular_url",
    "read_tabular_file",
    "resolve_attachments",
    "tabular_name_from_url",
    "validate_tabular_url",
]
