"""
Worker module.
Contains the polling worker and the job handler registry.
"""

from leasequeue.worker.handlers import execute_job, get_handler, register_handler
from leasequeue.worker.main import Worker, run

__all__ = ["Worker", "run", "register_handler", "get_handler", "execute_job"]
