"""
licensing/fingerprint.py -- Machine fingerprint used to bind a license to one host.

The fingerprint is the SHA-256 hex digest of a canonical JSON document
(sorted keys, compact separators) built from:

  platform      sys.platform
  arch          platform.machine()
  hostname      socket.gethostname()
  cpuModels     sorted unique CPU model strings
  macAddresses  sorted MACs of non-loopback interfaces, all-zero MACs dropped
  instanceId    a UUID persisted on disk, so two containers cloned from the
                same image still get different fingerprints

Interface enumeration uses psutil so the same code runs on Linux, macOS and
Windows.

The instance id is read from LICENSE_INSTANCE_FILE, falling back to
./.license-instance-id. When neither exists a new UUID4 is written to the
first writable location. If no location is writable the id lives only in
memory for this process, which means the fingerprint changes on restart and
the license will report HARDWARE_MISMATCH -- logged as a warning.
"""

from __future__ import annotations

import hashlib
import json
import logging
import platform
import socket
import sys
import uuid
from functools import lru_cache
from pathlib import Path

import psutil

from core.config import get_settings

logger = logging.getLogger("pcvisor.license")

_FALLBACK_INSTANCE_FILE = ".license-instance-id"
_ZERO_MAC = "00:00:00:00:00:00"
_CPUINFO = Path("/proc/cpuinfo")


def _candidate_paths(instance_file: str) -> list[Path]:
    paths = [Path(instance_file)] if instance_file else []
    paths.append(Path.cwd() / _FALLBACK_INSTANCE_FILE)
    return paths


@lru_cache
def get_instance_id(instance_file: str | None = None) -> str:
    """Return the persistent instance id, creating it on first use.

    Cached for the process lifetime. Tests call get_instance_id.cache_clear().
    """
    if instance_file is None:
        instance_file = get_settings().license_instance_file
    paths = _candidate_paths(instance_file)

    for path in paths:
        try:
            value = path.read_text(encoding="utf-8").strip()
        except OSError:
            continue
        if value:
            return value

    new_id = str(uuid.uuid4())
    for path in paths:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(new_id, encoding="utf-8")
        except OSError as e:
            logger.debug("Instance id not writable at %s: %s", path, e)
            continue
        logger.info("Created license instance id at %s", path)
        return new_id

    logger.warning("No writable location for the license instance id; using an in-memory id")
    return new_id


def _cpu_models() -> list[str]:
    models: set[str] = set()
    try:
        for line in _CPUINFO.read_text(encoding="utf-8").splitlines():
            key, _, value = line.partition(":")
            if key.strip() == "model name" and value.strip():
                models.add(value.strip())
    except OSError as e:
        logger.debug("CPU model lookup via %s failed: %s", _CPUINFO, e)
    if not models:
        fallback = platform.processor()
        if fallback:
            models.add(fallback)
    return sorted(models)


def _mac_addresses() -> list[str]:
    macs: set[str] = set()
    for name, addrs in psutil.net_if_addrs().items():
        if name == "lo" or name.startswith("Loopback"):
            continue
        for addr in addrs:
            if addr.family != psutil.AF_LINK or not addr.address:
                continue
            mac = addr.address.lower().replace("-", ":")
            if mac != _ZERO_MAC:
                macs.add(mac)
    return sorted(macs)


def collect_machine_info() -> dict:
    """Raw identifiers that feed the fingerprint."""
    return {
        "platform": sys.platform,
        "arch": platform.machine(),
        "hostname": socket.gethostname(),
        "cpuModels": _cpu_models(),
        "macAddresses": _mac_addresses(),
        "instanceId": get_instance_id(),
    }


def fingerprint_from_info(info: dict) -> str:
    canonical = json.dumps(info, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def get_machine_fingerprint() -> str:
    return fingerprint_from_info(collect_machine_info())


def get_machine_fingerprint_details() -> dict:
    info = collect_machine_info()
    return {
        "fingerprint": fingerprint_from_info(info),
        "platform": info["platform"],
        "arch": info["arch"],
        "hostname": info["hostname"],
        "instanceId": info["instanceId"],
    }
