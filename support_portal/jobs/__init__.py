"""
Background Jobs for the support portal.

This module contains scheduled jobs:
- reconcile_hours: Nightly used-hours recompute and orphaned upload sweep
"""

from .reconcile_hours import run_reconcile_job

__all__ = ["run_reconcile_job"]
