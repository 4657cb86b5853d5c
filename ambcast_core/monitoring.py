#!/usr/bin/env python3
"""
Monitoring Module

Point-in-time resource usage for the transcoder process and the host,
reported by the /health endpoint.
"""

import platform
import socket
from typing import Any, Dict, Optional

import psutil

from ambcast_core.logging_config import get_logger

logger = get_logger("monitoring")


def get_process_stats(pid: Optional[int]) -> Optional[Dict[str, Any]]:
    """
    Get resource usage of one process.

    Args:
        pid: Process id, usually the running ffmpeg

    Returns:
        Dict: Process metrics, or None if the process is gone or not visible
    """
    if pid is None:
        return None
    try:
        proc = psutil.Process(pid)
        with proc.oneshot():
            memory = proc.memory_info()
            return {
                "pid": pid,
                "status": proc.status(),
                "cpu_percent": proc.cpu_percent(interval=None),
                "memory_rss": memory.rss,
                "num_threads": proc.num_threads(),
                "create_time": proc.create_time(),
            }
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess) as e:
        logger.debug(f"No stats for process {pid}: {e}")
        return None


def get_system_stats(disk_path: str = "/") -> Dict[str, Any]:
    """Host CPU, memory and disk usage (disk measured where segments are written)."""
    memory = psutil.virtual_memory()
    disk = psutil.disk_usage(disk_path)
    return {
        "hostname": socket.gethostname(),
        "platform": platform.platform(),
        "cpu_count": psutil.cpu_count(logical=True),
        "cpu_percent": psutil.cpu_percent(interval=None),
        "memory_percent": memory.percent,
        "memory_used": memory.used,
        "disk_percent": disk.percent,
        "disk_free": disk.free,
    }
