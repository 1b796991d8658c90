"""
Service layer for the EchoVault scheduler.

This package contains the reminder and delivery engine: deadline
calculation, schedule generation, the claim queue, the dispatcher, the
reclaimer, condition lifecycle and the panic flow.
"""

from .engine import process, stats
from .reclaimer import fix_stuck
from .schedule_generator import regenerate_schedule

__all__ = ["process", "stats", "fix_stuck", "regenerate_schedule"]
