"""Task storage: both logs of every task plus the task-history index, as JSON files.

Layout under ``storage_dir``::

    tasks/<task_id>/api_conversation_history.json
    tasks/<task_id>/ui_messages.json
    task_history.json

Files are written atomically (write-to-tmp + rename) so a crash never leaves a
half-written log behind.  Older installs named the UI log
``claude_messages.json``; it is read (and migrated) when the new file is absent.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List

from agentic_coder.domain import HistoryItem, Message

logger = logging.getLogger(__name__)

API_HISTORY_FILE = "api_conversation_history.json"
UI_MESSAGES_FILE = "ui_messages.json"
LEGACY_UI_MESSAGES_FILE = "claude_messages.json"
HISTORY_INDEX_FILE = "task_history.json"


def _write_json_atomic(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
    os.replace(tmp, path)


def _read_json_list(path: Path) -> List[Any]:
    if not path.is_file():
        return []
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Failed to read %s: %s", path, exc)
        return []
    return data if isinstance(data, list) else []


class FileTaskStorage:
    """``TaskStorage`` on the local filesystem."""

    def __init__(self, storage_dir: str) -> None:
        self.root = Path(storage_dir).expanduser()

    def task_dir(self, task_id: str) -> Path:
        return self.root / "tasks" / task_id

    # ------------------------------------------------------------------
    # Conversation history
    # ------------------------------------------------------------------

    def load_api_history(self, task_id: str) -> List[Dict[str, Any]]:
        return [e for e in _read_json_list(self.task_dir(task_id) / API_HISTORY_FILE) if isinstance(e, dict)]

    def save_api_history(self, task_id: str, history: List[Dict[str, Any]]) -> None:
        _write_json_atomic(self.task_dir(task_id) / API_HISTORY_FILE, history)

    # ------------------------------------------------------------------
    # UI messages
    # ------------------------------------------------------------------

    def load_ui_messages(self, task_id: str) -> List[Message]:
        task_dir = self.task_dir(task_id)
        path = task_dir / UI_MESSAGES_FILE
        legacy = task_dir / LEGACY_UI_MESSAGES_FILE
        if not path.is_file() and legacy.is_file():
            raw = _read_json_list(legacy)
            messages = [Message.from_dict(m) for m in raw if isinstance(m, dict)]
            _write_json_atomic(path, [m.to_dict() for m in messages])
            legacy.unlink()
            logger.info("Migrated %s to %s for task %s", LEGACY_UI_MESSAGES_FILE, UI_MESSAGES_FILE, task_id)
            return messages
        return [Message.from_dict(m) for m in _read_json_list(path) if isinstance(m, dict)]

    def save_ui_messages(self, task_id: str, messages: List[Message]) -> None:
        _write_json_atomic(self.task_dir(task_id) / UI_MESSAGES_FILE, [m.to_dict() for m in messages])

    def task_dir_size(self, task_id: str) -> int:
        total = 0
        for current, _dirs, files in os.walk(self.task_dir(task_id)):
            for name in files:
                try:
                    total += os.path.getsize(os.path.join(current, name))
                except OSError:
                    continue
        return total

    def delete_task(self, task_id: str) -> None:
        task_dir = self.task_dir(task_id)
        for name in (API_HISTORY_FILE, UI_MESSAGES_FILE, LEGACY_UI_MESSAGES_FILE):
            path = task_dir / name
            if path.exists():
                path.unlink()
        if task_dir.is_dir() and not any(task_dir.iterdir()):
            task_dir.rmdir()

    # ------------------------------------------------------------------
    # History index
    # ------------------------------------------------------------------

    def load_history(self) -> List[HistoryItem]:
        items = []
        for raw in _read_json_list(self.root / HISTORY_INDEX_FILE):
            if not isinstance(raw, dict) or "id" not in raw:
                continue
            items.append(HistoryItem.from_dict(raw))
        return items

    def save_history(self, items: List[HistoryItem]) -> None:
        _write_json_atomic(self.root / HISTORY_INDEX_FILE, [item.to_dict() for item in items])
