"""
Background Jobs for MSP Reporting.

- sync_worker: in-process queue behind ``POST /sync``
- sync_job: cron entry point for a one-off full sync
"""

from .sync_worker import SyncTaskQueue

__all__ = ["SyncTaskQueue"]
