"""
Test execution components for UI Harness.

This module provides session and result models, failure artifact capture,
and test registration and selection.
"""

from .artifacts import ArtifactCollector
from .models import (
    ArtifactBundle,
    ArtifactItem,
    ArtifactKind,
    LifecycleState,
    RunReport,
    SessionResult,
    TestOutcome,
)
from .registry import RegisteredTest, TestFilter, collect, ui_test

__all__ = [
    "ArtifactCollector",
    "ArtifactBundle",
    "ArtifactItem",
    "ArtifactKind",
    "LifecycleState",
    "RunReport",
    "SessionResult",
    "TestOutcome",
    "RegisteredTest",
    "TestFilter",
    "collect",
    "ui_test",
]
