"""
Token launch bundles.

Approval, liquidity, sniper funding and buy swaps built from a JSON plan.
"""

from bundler.launch.calls import LaunchCallFactory, build_launch_entries, plan_funding
from bundler.launch.plan import LaunchPlan, load_plan

__all__ = [
    "LaunchCallFactory",
    "build_launch_entries",
    "plan_funding",
    "LaunchPlan",
    "load_plan",
]
