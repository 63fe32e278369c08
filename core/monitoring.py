"""
core/monitoring.py -- Host metrics and health verdict for the admin console.

Metrics come from psutil. The health verdict is computed by evaluate_health(),
a pure function of the CPU / memory percentages and host uptime:

  > 90 %  critical
  > 75 %  warning
  else    healthy

Either resource can raise the verdict; critical always wins.
"""

from __future__ import annotations

import os
import platform
import socket
import time
from dataclasses import dataclass, field

import psutil

from core.database import now_iso

CRITICAL_PERCENT = 90
WARNING_PERCENT = 75
# Hosts up for less than this many seconds report uptime "starting".
STARTING_UPTIME_SECONDS = 60


def _cpu_model() -> str:
    return platform.processor() or platform.machine() or "Unknown"


def host_uptime_seconds() -> int:
    return int(time.time() - psutil.boot_time())


def collect_metrics() -> dict:
    """Snapshot of CPU, memory, disk, uptime and this process, in the console's JSON shape."""
    cpu_usage = round(psutil.cpu_percent(interval=0.1))
    memory = psutil.virtual_memory()
    used_memory = memory.total - memory.available

    disk = psutil.disk_usage("/")
    proc = psutil.Process(os.getpid())
    proc_memory = proc.memory_info()

    return {
        "cpu": {
            "usage": cpu_usage,
            "cores": psutil.cpu_count() or 0,
            "model": _cpu_model(),
        },
        "memory": {
            "total": memory.total,
            "used": used_memory,
            "free": memory.available,
            "percent": round(used_memory / memory.total * 100) if memory.total else 0,
        },
        "disk": {
            "total": disk.total,
            "used": disk.used,
            "free": disk.free,
            "percent": round(disk.percent),
        },
        "uptime": host_uptime_seconds(),
        "process": {
            "pid": proc.pid,
            "rss": proc_memory.rss,
            "vms": proc_memory.vms,
            "threads": proc.num_threads(),
            "count": len(psutil.pids()),
        },
        "python": {
            "version": platform.python_version(),
            "implementation": platform.python_implementation(),
        },
        "system": {
            "hostname": socket.gethostname(),
            "platform": platform.system().lower(),
            "arch": platform.machine(),
            "release": platform.release(),
        },
        "timestamp": now_iso(),
    }


@dataclass
class HealthReport:
    status: str = "healthy"
    issues: list[str] = field(default_factory=list)
    checks: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"status": self.status, "issues": self.issues, "checks": self.checks, "timestamp": now_iso()}


def evaluate_health(cpu_percent: float, memory_percent: float, uptime_seconds: float) -> HealthReport:
    report = HealthReport()

    for label, value in (("Memory", memory_percent), ("CPU", cpu_percent)):
        if value > CRITICAL_PERCENT:
            report.status = "critical"
            report.issues.append(f"{label} usage is critically high")
        elif value > WARNING_PERCENT:
            if report.status != "critical":
                report.status = "warning"
            report.issues.append(f"{label} usage is high")

    report.checks = {
        "memory": "ok" if memory_percent <= CRITICAL_PERCENT else "warning",
        "cpu": "ok" if cpu_percent <= CRITICAL_PERCENT else "warning",
        "uptime": "ok" if uptime_seconds > STARTING_UPTIME_SECONDS else "starting",
    }
    return report


def check_health() -> HealthReport:
    memory = psutil.virtual_memory()
    memory_percent = (memory.total - memory.available) / memory.total * 100 if memory.total else 0
    return evaluate_health(
        cpu_percent=psutil.cpu_percent(interval=0.1),
        memory_percent=round(memory_percent),
        uptime_seconds=host_uptime_seconds(),
    )
