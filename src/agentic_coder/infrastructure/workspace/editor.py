"""Disk-backed ``FileEditor``.

The proposed content is written to disk as soon as it is final, so the human
can inspect (and hand-edit) the file while the approval prompt is open.
``save_changes`` reports any such hand edits; ``revert_changes`` restores the
exact original bytes, or removes a file (and the directories) it created.
"""

from __future__ import annotations

import logging
import os
from typing import List, Optional

from agentic_coder.application.ports import SaveResult
from agentic_coder.application.responses import create_pretty_patch

logger = logging.getLogger(__name__)


class FileEditSession:
    def __init__(self, cwd: str) -> None:
        self.cwd = cwd
        self.is_editing = False
        self.edit_type: Optional[str] = None
        self.original_content: Optional[str] = None
        self.rel_path: Optional[str] = None
        self.new_content: Optional[str] = None
        self._original_bytes: Optional[bytes] = None
        self._created_dirs: List[str] = []

    @property
    def absolute_path(self) -> str:
        return os.path.abspath(os.path.join(self.cwd, self.rel_path or ""))

    async def open(self, rel_path: str) -> None:
        self.rel_path = rel_path
        self.is_editing = True
        path = self.absolute_path
        if os.path.isfile(path):
            self.edit_type = "modify"
            with open(path, "rb") as fh:
                self._original_bytes = fh.read()
            self.original_content = self._original_bytes.decode("utf-8", errors="replace")
        else:
            self.edit_type = "create"
            self._original_bytes = None
            self.original_content = ""
        self._created_dirs = self._missing_dirs(os.path.dirname(path))

    @staticmethod
    def _missing_dirs(directory: str) -> List[str]:
        missing = []
        while directory and not os.path.exists(directory):
            missing.append(directory)
            parent = os.path.dirname(directory)
            if parent == directory:
                break
            directory = parent
        return missing

    def _write(self, content: str) -> None:
        path = self.absolute_path
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8", newline="") as fh:
            fh.write(content)

    async def update(self, content: str, is_final: bool) -> None:
        if not self.is_editing:
            raise RuntimeError("update() called before open()")
        self.new_content = content
        if is_final:
            self._write(content)

    async def save_changes(self) -> SaveResult:
        if not self.is_editing or self.new_content is None:
            return SaveResult()
        path = self.absolute_path
        try:
            with open(path, "r", encoding="utf-8", newline="") as fh:
                on_disk = fh.read()
        except FileNotFoundError:
            on_disk = self.new_content
            self._write(on_disk)

        user_edits = None
        if on_disk != self.new_content:
            user_edits = create_pretty_patch(self.rel_path or "", self.new_content, on_disk) or None
            logger.info("User edited %s before saving", self.rel_path)
        return SaveResult(new_problems_message="", user_edits=user_edits, final_content=on_disk)

    async def revert_changes(self) -> None:
        if not self.is_editing:
            return
        path = self.absolute_path
        if self.edit_type == "create":
            if os.path.isfile(path):
                os.remove(path)
            # innermost first
            for directory in self._created_dirs:
                try:
                    os.rmdir(directory)
                except OSError:
                    break
        elif self._original_bytes is not None:
            with open(path, "wb") as fh:
                fh.write(self._original_bytes)
        logger.debug("Reverted %s (%s)", self.rel_path, self.edit_type)
        await self.reset()

    async def reset(self) -> None:
        self.is_editing = False
        self.edit_type = None
        self.original_content = None
        self.rel_path = None
        self.new_content = None
        self._original_bytes = None
        self._created_dirs = []
