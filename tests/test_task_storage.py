"""JSON task storage."""
from __future__ import annotations

import json

from agentic_coder.domain import HistoryItem, Message
from agentic_coder.infrastructure.workspace.task_storage import (
    API_HISTORY_FILE,
    LEGACY_UI_MESSAGES_FILE,
    UI_MESSAGES_FILE,
    FileTaskStorage,
)


def test_logs_round_trip_without_temp_files(tmp_path):
    storage = FileTaskStorage(str(tmp_path))
    messages = [
        Message(ts=1, type="say", say="text", text="Fix it"),
        Message(ts=2, type="ask", ask="tool", text="{}", partial=False),
    ]
    history = [{"role": "user", "content": [{"type": "text", "text": "<task>x</task>"}], "ts": 1}]
    storage.save_ui_messages("t1", messages)
    storage.save_api_history("t1", history)

    assert storage.load_ui_messages("t1") == messages
    assert storage.load_api_history("t1") == history
    names = sorted(p.name for p in storage.task_dir("t1").iterdir())
    assert names == sorted([API_HISTORY_FILE, UI_MESSAGES_FILE])
    assert storage.task_dir_size("t1") > 0


def test_missing_task_loads_empty(tmp_path):
    storage = FileTaskStorage(str(tmp_path))
    assert storage.load_ui_messages("nope") == []
    assert storage.load_api_history("nope") == []
    assert storage.load_history() == []


def test_corrupt_file_loads_empty(tmp_path):
    storage = FileTaskStorage(str(tmp_path))
    task_dir = storage.task_dir("t1")
    task_dir.mkdir(parents=True)
    (task_dir / UI_MESSAGES_FILE).write_text("{not json", encoding="utf-8")
    (task_dir / API_HISTORY_FILE).write_text('{"a": 1}', encoding="utf-8")
    assert storage.load_ui_messages("t1") == []
    assert storage.load_api_history("t1") == []


def test_legacy_ui_log_is_migrated(tmp_path):
    storage = FileTaskStorage(str(tmp_path))
    task_dir = storage.task_dir("old")
    task_dir.mkdir(parents=True)
    legacy = [{"ts": 5, "type": "say", "say": "text", "text": "hello", "progressStatus": {"icon": "x"}}]
    (task_dir / LEGACY_UI_MESSAGES_FILE).write_text(json.dumps(legacy), encoding="utf-8")

    messages = storage.load_ui_messages("old")
    assert messages[0].text == "hello"
    assert messages[0].progress_status == {"icon": "x"}
    assert not (task_dir / LEGACY_UI_MESSAGES_FILE).exists()
    assert (task_dir / UI_MESSAGES_FILE).exists()
    assert storage.load_ui_messages("old") == messages


def test_history_index_skips_entries_without_id(tmp_path):
    storage = FileTaskStorage(str(tmp_path))
    item = HistoryItem(id="abc", number=1, ts=10, task="Refactor", tokens_in=3, total_cost=0.25)
    storage.save_history([item])
    raw = json.loads((tmp_path / "task_history.json").read_text(encoding="utf-8"))
    raw.append({"task": "orphan"})
    raw.append("garbage")
    (tmp_path / "task_history.json").write_text(json.dumps(raw), encoding="utf-8")

    assert storage.load_history() == [item]


def test_delete_task_removes_its_directory(tmp_path):
    storage = FileTaskStorage(str(tmp_path))
    storage.save_ui_messages("t1", [Message(ts=1, type="say", say="text", text="x")])
    storage.save_api_history("t1", [])
    storage.delete_task("t1")
    assert not storage.task_dir("t1").exists()
