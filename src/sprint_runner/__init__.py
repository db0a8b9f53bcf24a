"""Provide the public `sprint_runner` package exports."""

from __future__ import annotations

from .controller import SprintController
from .detector import SprintStateDetector
from .lifecycle import TaskLifecycleController
from .sync import ChecklistSynchronizer
from .tracker import GitHubIssueStore, InMemoryIssueStore
from .verifier import StatusVerifier

__all__ = [
    "ChecklistSynchronizer",
    "GitHubIssueStore",
    "InMemoryIssueStore",
    "SprintController",
    "SprintStateDetector",
    "StatusVerifier",
    "TaskLifecycleController",
]
