"""Authoritative log infrastructure for grid replicas.

Provides a serial-assigning update log shared by replicas, a follower that
feeds it to a replica, and an in-process hub for simulations.
"""

from .local_hub import LocalHub
from .log_follower import LogFollower
from .update_log import Delivery, LogRecord, UpdateLog

__all__ = ["Delivery", "LocalHub", "LogFollower", "LogRecord", "UpdateLog"]
