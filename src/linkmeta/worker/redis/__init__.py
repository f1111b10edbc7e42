"""Redis utilities for the metadata worker.

This package provides:
- LuaScripts: Atomic Lua scripts for queue acknowledgement and recovery
- get_queue_health: Queue depth and backlog check
- QueueHealth: Named tuple for health status
"""

from linkmeta.worker.redis.client import QueueHealth, get_queue_health
from linkmeta.worker.redis.lua_scripts import LuaScripts

__all__ = [
    "LuaScripts",
    "QueueHealth",
    "get_queue_health",
]
