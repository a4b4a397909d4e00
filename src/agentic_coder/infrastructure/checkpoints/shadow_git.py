"""Workspace snapshots in a shadow git repository.

The repository lives under ``<shadow_dir>/tasks/<task_id>/checkpoints/.git``
with its work tree pointed at the workspace, so the workspace's own ``.git``
(if any) is never touched.  Every save stages the whole work tree and commits
it; restore is ``git clean`` + ``git reset --hard``.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from pathlib import Path
from typing import List, Optional, Tuple

from agentic_coder.application.ports import CheckpointServiceOptions
from agentic_coder.config.constants import DEFAULT_IGNORED_DIRS
from agentic_coder.domain import CheckpointError, CheckpointEvent, FileChange
from agentic_coder.infrastructure.events import EventEmitter

logger = logging.getLogger(__name__)

_EXCLUDED_FILES = (
    "*.log", "*.tmp", "*.swp", ".DS_Store",
    "*.png", "*.jpg", "*.jpeg", "*.gif", "*.ico", "*.webp",
    "*.mp3", "*.mp4", "*.mov", "*.zip", "*.tar", "*.gz", "*.7z",
    "*.sqlite", "*.db", "*.pyc",
)

_AUTHOR = {
    "GIT_AUTHOR_NAME": "agentic-coder",
    "GIT_AUTHOR_EMAIL": "noreply@agentic-coder.local",
    "GIT_COMMITTER_NAME": "agentic-coder",
    "GIT_COMMITTER_EMAIL": "noreply@agentic-coder.local",
}


def _protected_dirs() -> List[str]:
    home = os.path.expanduser("~")
    return [os.path.abspath(os.sep), home] + [
        os.path.join(home, name) for name in ("Desktop", "Documents", "Downloads")
    ]


def exclude_patterns() -> List[str]:
    return [f"{name}/" for name in sorted(DEFAULT_IGNORED_DIRS)] + list(_EXCLUDED_FILES)


class ShadowGitCheckpointService(EventEmitter):
    """``CheckpointService`` over a per-task shadow repository.

    Events: ``initialize`` (no arguments), ``checkpoint``
    (:class:`CheckpointEvent`), ``restore`` (the commit hash).
    """

    def __init__(self, options: CheckpointServiceOptions) -> None:
        super().__init__()
        workspace = os.path.abspath(options.workspace_dir)
        if workspace in _protected_dirs():
            raise CheckpointError(f"Cannot use checkpoints in {workspace}")
        self.task_id = options.task_id
        self.workspace_dir = workspace
        self.checkpoints_dir = Path(options.shadow_dir).expanduser() / "tasks" / options.task_id / "checkpoints"
        self.git_dir = self.checkpoints_dir / ".git"
        self._log = options.log
        self.is_initialized = False
        self.base_hash: Optional[str] = None
        self._checkpoints: List[str] = []
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # git plumbing
    # ------------------------------------------------------------------

    async def _git(self, *args: str, check: bool = True) -> Tuple[int, str]:
        env = dict(os.environ)
        env.update(_AUTHOR)
        env["GIT_DIR"] = str(self.git_dir)
        env["GIT_WORK_TREE"] = self.workspace_dir
        proc = await asyncio.create_subprocess_exec(
            "git", *args,
            cwd=self.workspace_dir,
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        out, err = await proc.communicate()
        if check and proc.returncode != 0:
            raise CheckpointError(
                f"git {' '.join(args)} failed ({proc.returncode}): {err.decode('utf-8', errors='replace').strip()}"
            )
        return proc.returncode or 0, out.decode("utf-8", errors="replace")

    async def _head(self) -> str:
        _, out = await self._git("rev-parse", "HEAD")
        return out.strip()

    async def _stage_all(self) -> None:
        await self._git("add", "--all", "--ignore-errors", ".", check=False)

    def _write_excludes(self) -> None:
        info = self.git_dir / "info"
        info.mkdir(parents=True, exist_ok=True)
        (info / "exclude").write_text("\n".join(exclude_patterns()) + "\n", encoding="utf-8")

    # ------------------------------------------------------------------
    # CheckpointService
    # ------------------------------------------------------------------

    async def init_shadow_git(self) -> None:
        if self.is_initialized:
            return
        started = time.monotonic()
        async with self._lock:
            created = not (self.git_dir / "HEAD").exists()
            if created:
                self.checkpoints_dir.mkdir(parents=True, exist_ok=True)
                await self._git("init", "--quiet")
                await self._git("config", "core.worktree", self.workspace_dir)
                await self._git("config", "commit.gpgSign", "false")
                self._write_excludes()
                await self._stage_all()
                await self._git("commit", "--quiet", "--allow-empty", "-m", "initial commit")
            else:
                self._write_excludes()
            self.base_hash = await self._head()
            if created:
                self._checkpoints = []
            else:
                _, log = await self._git("rev-list", "--reverse", "HEAD")
                self._checkpoints = log.split()[1:]
            self.is_initialized = True
        self._log(
            f"[ShadowGitCheckpointService] {'created' if created else 'reused'} shadow repo for "
            f"{self.workspace_dir} (base {self.base_hash}, {int((time.monotonic() - started) * 1000)}ms)"
        )
        self.emit("initialize")

    async def save_checkpoint(self, message: str) -> Optional[str]:
        if not self.is_initialized:
            raise CheckpointError("Shadow git repo not initialized")
        async with self._lock:
            from_hash = self._checkpoints[-1] if self._checkpoints else self.base_hash
            await self._stage_all()
            code, _ = await self._git("diff", "--cached", "--quiet", check=False)
            if code == 0:
                logger.debug("No workspace changes since %s; skipping checkpoint", from_hash)
                return None
            await self._git("commit", "--quiet", "-m", message)
            to_hash = await self._head()
            is_first = not self._checkpoints
            self._checkpoints.append(to_hash)
        self._log(f"[ShadowGitCheckpointService] checkpoint saved {to_hash}")
        self.emit("checkpoint", CheckpointEvent(from_hash=from_hash or "", to_hash=to_hash, is_first=is_first))
        return to_hash

    async def restore_checkpoint(self, commit_hash: str) -> None:
        if not self.is_initialized:
            raise CheckpointError("Shadow git repo not initialized")
        async with self._lock:
            await self._git("clean", "-f", "-d", "-q")
            await self._git("reset", "--hard", "--quiet", commit_hash)
            if commit_hash in self._checkpoints:
                del self._checkpoints[self._checkpoints.index(commit_hash) + 1:]
            elif commit_hash == self.base_hash:
                self._checkpoints = []
        self._log(f"[ShadowGitCheckpointService] restored checkpoint {commit_hash}")
        self.emit("restore", commit_hash)

    async def _show(self, commit_hash: str, rel_path: str) -> str:
        code, out = await self._git("show", f"{commit_hash}:{rel_path}", check=False)
        return out if code == 0 else ""

    async def get_diff(self, from_hash: Optional[str] = None, to_hash: Optional[str] = None) -> List[FileChange]:
        """Files changed between two commits; ``to_hash=None`` compares against the work tree."""
        if not self.is_initialized:
            raise CheckpointError("Shadow git repo not initialized")
        base = from_hash or self.base_hash
        async with self._lock:
            if to_hash is None:
                await self._stage_all()
                _, names = await self._git("diff", "--cached", "--name-only", base)
            else:
                _, names = await self._git("diff", "--name-only", base, to_hash)

            changes: List[FileChange] = []
            for rel_path in filter(None, names.splitlines()):
                absolute = os.path.join(self.workspace_dir, rel_path)
                before = await self._show(base, rel_path)
                if to_hash is None:
                    try:
                        with open(absolute, "r", encoding="utf-8", errors="replace") as fh:
                            after = fh.read()
                    except OSError:
                        after = ""
                else:
                    after = await self._show(to_hash, rel_path)
                changes.append(FileChange(
                    relative_path=rel_path,
                    absolute_path=absolute,
                    before=before,
                    after=after,
                ))
        return changes


def shadow_git_factory(options: CheckpointServiceOptions) -> ShadowGitCheckpointService:
    """``CheckpointServiceFactory`` for :class:`ShadowGitCheckpointService`."""
    return ShadowGitCheckpointService(options)
