"""
Jobs module - job lifecycle state machine.
"""

from freightledger.jobs.lifecycle import JobLifecycleManager

__all__ = [
    "JobLifecycleManager",
]
