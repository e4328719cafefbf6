"""
Reaper module.
Contains the background loop that reclaims stale leases and purges
exhausted jobs.
"""

from leasequeue.reaper.main import Reaper, run

__all__ = ["Reaper", "run"]
