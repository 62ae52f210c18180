"""
Bundle execution engine.

Contains the submission state machine, the executor that drives it, and
the validating factory that creates executors.
"""

from bundler.engine.builder import ExecutorSettings, build_executor, validate_settings
from bundler.engine.executor import BundleExecutor
from bundler.engine.loop import Effect, Transition

__all__ = [
    "ExecutorSettings",
    "build_executor",
    "validate_settings",
    "BundleExecutor",
    "Effect",
    "Transition",
]
