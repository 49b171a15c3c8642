"""Write one transcript file per streamed chat turn."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo

EASTERN = ZoneInfo("America/New_York")


class ConversationLogWriter:
    """Persist chat turns to date-stamped log files."""

    def __init__(self, base_dir: Path, *, min_level: int | None) -> None:
        self._base_dir = base_dir.resolve()
        self._min_level = min_level

    @property
    def enabled(self) -> bool:
        # Turns are logged as INFO-level events.
        return self._min_level is not None and logging.INFO >= self._min_level

    async def write(
        self,
        *,
        request_id: str,
        request_snapshot: dict[str, Any],
        deltas: list[str],
        logged_at: datetime | None = None,
    ) -> Path | None:
        """Append the request summary and reframed reply if enabled."""

        if not self.enabled:
            return None

        timestamp = (logged_at or datetime.now(timezone.utc)).astimezone(timezone.utc)
        safe_request_id = request_id.replace("/", "_")

        entry = {
            "type": "chat_turn",
            "logged_at": timestamp.isoformat(),
            "request_id": request_id,
            "request": request_snapshot,
            "delta_count": len(deltas),
            "response": "".join(deltas),
        }
        rendered_entry = json.dumps(entry, ensure_ascii=False, indent=2)
        local_time = timestamp.astimezone(EASTERN)
        local_date = local_time.strftime("%Y-%m-%d")
        tz_abbr = local_time.tzname() or "ET"
        human_time = local_time.strftime("%Y-%m-%d_%H-%M-%S")

        log_path = (
            self._base_dir
            / local_date
            / f"turn_{human_time}_{tz_abbr}_{safe_request_id}.log"
        )

        delimiter = "=" * 80
        header = timestamp.strftime("%Y-%m-%d %H:%M:%S UTC")
        payload = f"{header}\n{delimiter}\n{rendered_entry}\n{delimiter}\n"

        await asyncio.to_thread(self._append_entry, log_path, payload)
        return log_path

    def _append_entry(self, path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(content)


__all__ = ["ConversationLogWriter"]
