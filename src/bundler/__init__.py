"""
Relay Bundler

Builds, signs, simulates and submits ordered transaction bundles to a
private block-builder relay. A bundle is included atomically in one target
block; the executor resubmits it on every new block until it lands, fails,
or is stopped.
"""

__version__ = "0.1.0"

from bundler.core.account import AccountIdentity
from bundler.core.bundle import Bundle, BundleAssembler, BundleEntry
from bundler.core.outcome import RunReport, RunStatus
from bundler.engine.builder import ExecutorSettings, build_executor
from bundler.engine.executor import BundleExecutor

__all__ = [
    "AccountIdentity",
    "Bundle",
    "BundleAssembler",
    "BundleEntry",
    "RunReport",
    "RunStatus",
    "ExecutorSettings",
    "build_executor",
    "BundleExecutor",
]
