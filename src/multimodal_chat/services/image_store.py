"""Swap inline image data URLs for durable object-store URLs."""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import mimetypes
import re
from dataclasses import dataclass
from datetime import timedelta
from pathlib import PurePosixPath
from uuid import uuid4

from ..config import Settings
from .gcs import is_gcs_available, upload_and_sign

logger = logging.getLogger(__name__)

_filename_pattern = re.compile(r"[^A-Za-z0-9._-]+")


class InvalidDataURL(ValueError):
    """Raised when an inline payload is not a base64 image data URL."""


@dataclass(frozen=True)
class DecodedImage:
    mime_type: str
    data: bytes


def decode_data_url(data_url: str) -> DecodedImage:
    """Decode ``data:<mime>;base64,<payload>`` into bytes."""

    header, separator, encoded = data_url.partition(",")
    if not separator or not header.startswith("data:"):
        raise InvalidDataURL("Not a data URL")
    params = header[len("data:") :].split(";")
    mime_type = params[0].strip().lower() or "application/octet-stream"
    if "base64" not in (param.strip().lower() for param in params[1:]):
        raise InvalidDataURL("Only base64 data URLs are supported")
    if not mime_type.startswith("image/"):
        raise InvalidDataURL(f"Unsupported inline media type {mime_type}")
    try:
        data = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidDataURL("Malformed base64 payload") from exc
    if not data:
        raise InvalidDataURL("Inline image was empty")
    return DecodedImage(mime_type=mime_type, data=data)


def make_blob_name(scope: str, image_id: str, filename: str) -> str:
    """Return a safe blob name grouped under ``scope``."""

    safe_name = _filename_pattern.sub("_", filename or "").strip("._-")
    if not safe_name:
        safe_name = "image"
    return str(PurePosixPath(scope) / f"{image_id}__{safe_name}")


class ImageStore:
    """Best-effort persistence of inline chat images.

    ``persist`` never raises: when the store is disabled, unconfigured or the
    upload fails, the original data URL is returned unchanged.
    """

    def __init__(self, settings: Settings, *, scope: str = "chat-images") -> None:
        self._settings = settings
        self._scope = scope
        self._expires = timedelta(hours=settings.image_url_ttl_hours)

    @property
    def available(self) -> bool:
        return self._settings.image_store_enabled and is_gcs_available(self._settings)

    async def persist(self, data_url: str) -> str:
        if not data_url.startswith("data:"):
            return data_url
        if not self.available:
            logger.debug("Image store unavailable; forwarding inline image")
            return data_url

        try:
            image = decode_data_url(data_url)
        except InvalidDataURL as exc:
            logger.warning("Forwarding inline image without storing it: %s", exc)
            return data_url

        image_id = uuid4().hex
        extension = mimetypes.guess_extension(image.mime_type) or ".bin"
        blob_name = make_blob_name(self._scope, image_id, f"image{extension}")
        try:
            url = await asyncio.to_thread(
                upload_and_sign,
                self._settings,
                blob_name,
                image.data,
                content_type=image.mime_type,
                expires_delta=self._expires,
            )
        except Exception:
            logger.warning(
                "Failed to store inline image %s; forwarding inline payload",
                image_id,
                exc_info=True,
            )
            return data_url

        logger.info(
            "Stored inline image %s (%s, %d bytes)",
            image_id,
            image.mime_type,
            len(image.data),
        )
        return url


__all__ = ["DecodedImage", "ImageStore", "InvalidDataURL", "decode_data_url", "make_blob_name"]
