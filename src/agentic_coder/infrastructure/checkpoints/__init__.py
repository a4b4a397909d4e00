"""Workspace checkpoints backed by a shadow git repository (needs ``git`` on PATH)."""

from agentic_coder.infrastructure.checkpoints.shadow_git import ShadowGitCheckpointService, shadow_git_factory

__all__ = ["ShadowGitCheckpointService", "shadow_git_factory"]
