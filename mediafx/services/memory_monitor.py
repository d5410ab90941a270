"""
Resource monitoring for montage jobs.

Montage jobs are disk-heavy (downloaded sources plus one segment per clip)
and transcodes spike memory, so both are logged at pipeline stage boundaries.
A job that pushes the container towards its limits shows up in the logs
before the OOM killer or a full disk does.

Usage:
    from mediafx.services.memory_monitor import log_memory_usage

    log_memory_usage("after_acquisition", job_id)
"""

import logging
import os
from typing import Optional

import psutil

from mediafx.config import get_settings

logger = logging.getLogger(__name__)

_MB = 1024 * 1024


def get_memory_usage_mb() -> dict:
    """
    Current process memory in MB.

    Returns:
        Dict with 'rss' and 'vms'; both 0 if measurement fails
    """
    try:
        mem_info = psutil.Process(os.getpid()).memory_info()
    except psutil.Error as e:
        logger.debug(f"Memory measurement failed: {e}")
        return {"rss": 0, "vms": 0}

    return {"rss": mem_info.rss / _MB, "vms": mem_info.vms / _MB}


def get_workspace_disk_free_mb(path: Optional[str] = None) -> Optional[float]:
    """Free space (MB) on the filesystem holding the workspace root, if it exists."""
    path = path or get_settings().workspace_root
    try:
        return psutil.disk_usage(path).free / _MB
    except OSError:
        return None


def log_memory_usage(stage: str, job_id: Optional[str] = None) -> dict:
    """
    Log memory and scratch disk headroom at a pipeline stage.

    Args:
        stage: Pipeline stage name (e.g. "after_extraction")
        job_id: Optional job ID for log correlation

    Returns:
        Memory usage dict with 'rss' and 'vms' in MB
    """
    settings = get_settings()
    mem = get_memory_usage_mb()
    disk_free = get_workspace_disk_free_mb(settings.workspace_root)

    prefix = f"[{job_id}] " if job_id else ""
    disk_note = f", disk free={disk_free:.0f}MB" if disk_free is not None else ""

    if mem["rss"] > 0:
        logger.info(f"{prefix}Resources [{stage}]: RSS={mem['rss']:.1f}MB{disk_note}")

        if mem["rss"] > settings.memory_warning_mb:
            logger.warning(
                f"{prefix}HIGH MEMORY WARNING [{stage}]: RSS={mem['rss']:.1f}MB exceeds "
                f"{settings.memory_warning_mb}MB threshold"
            )
    else:
        logger.debug(f"{prefix}Resources [{stage}]: memory measurement unavailable{disk_note}")

    if disk_free is not None and disk_free < settings.disk_warning_mb:
        logger.warning(
            f"{prefix}LOW DISK WARNING [{stage}]: {disk_free:.0f}MB free under "
            f"{settings.workspace_root}"
        )

    return mem
