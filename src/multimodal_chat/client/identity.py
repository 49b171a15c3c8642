"""Local persistence of the chat user's identity."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from uuid import uuid4

from ..errors import ValidationError

logger = logging.getLogger(__name__)

CACHE_DIR = Path.home() / ".cache" / "multimodal-chat"
IDENTITY_FILE = CACHE_DIR / "identity.json"
MAX_NAME_LENGTH = 50


@dataclass(frozen=True)
class Identity:
    user_id: str
    user_name: str


class IdentityStore:
    """Read and write the identity file used to resume as the same user."""

    def __init__(self, path: Path = IDENTITY_FILE) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Optional[Identity]:
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable identity file %s: %s", self._path, exc)
            return None
        user_id = raw.get("user_id") if isinstance(raw, dict) else None
        user_name = raw.get("user_name") if isinstance(raw, dict) else None
        if not user_id or not user_name:
            return None
        return Identity(user_id=str(user_id), user_name=str(user_name))

    def save(self, identity: Identity) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(
            json.dumps({"user_id": identity.user_id, "user_name": identity.user_name}),
            encoding="utf-8",
        )

    def create(self, name: str) -> Identity:
        """Mint a new identity for ``name`` and store it."""

        cleaned = name.strip()
        if not cleaned:
            raise ValidationError("Please enter your name")
        identity = Identity(user_id=str(uuid4()), user_name=cleaned[:MAX_NAME_LENGTH])
        self.save(identity)
        return identity

    def clear(self) -> None:
        try:
            self._path.unlink()
        except FileNotFoundError:
            pass


__all__ = ["IDENTITY_FILE", "Identity", "IdentityStore"]
