from __future__ import annotations

"""
Read-only preflight checks used by provisioning modules in validate().

Checks never mutate the machine. Independent checks (tool availability) may run
on a bounded worker pool; results come back in input order.
"""

import os
import shutil
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Iterable, List, Optional

import psutil
from pydantic import BaseModel, ConfigDict

from rites.core.errors import Severity


class CheckStatus(str, Enum):
    OK = "OK"
    DEGRADED = "DEGRADED"
    FAILED = "FAILED"


class CheckResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    check_id: str
    status: CheckStatus
    message: str
    remediation: Optional[str] = None
    severity: Severity = Severity.INFO


def check_command_available(command: str, *, required: bool = True) -> CheckResult:
    found = shutil.which(command)
    if found:
        return CheckResult(check_id=f"command.{command}", status=CheckStatus.OK, message=f"{command}: {found}")
    if required:
        return CheckResult(check_id=f"command.{command}", status=CheckStatus.FAILED, message=f"Missing command: {command}", remediation=f"Install {command} with the system package manager.", severity=Severity.ERROR)
    return CheckResult(check_id=f"command.{command}", status=CheckStatus.DEGRADED, message=f"Optional command not found: {command}", severity=Severity.WARN)


def check_commands_parallel(commands: Iterable[str], *, required: bool = True, max_workers: int = 4) -> List[CheckResult]:
    cmds = [str(c) for c in commands if str(c or "").strip()]
    if not cmds:
        return []
    with ThreadPoolExecutor(max_workers=max(1, min(int(max_workers), len(cmds))), thread_name_prefix="preflight") as pool:
        return list(pool.map(lambda c: check_command_available(c, required=required), cmds))


def check_dir_writable(path: str, check_id: str) -> CheckResult:
    if os.path.isdir(path) and os.access(path, os.W_OK | os.X_OK):
        return CheckResult(check_id=check_id, status=CheckStatus.OK, message=f"Writable: {path}")
    return CheckResult(check_id=check_id, status=CheckStatus.FAILED, message=f"Not writable: {path}", remediation="Fix ownership/permissions of the directory.", severity=Severity.CRITICAL)


def check_free_space(path: str, *, min_free_mb: int, check_id: str = "disk.free") -> CheckResult:
    try:
        usage = psutil.disk_usage(path)
    except OSError as e:
        return CheckResult(check_id=check_id, status=CheckStatus.FAILED, message=f"Unable to read disk usage for {path}", remediation=str(e), severity=Severity.ERROR)
    free_mb = int(usage.free // (1024 * 1024))
    if free_mb >= int(min_free_mb):
        return CheckResult(check_id=check_id, status=CheckStatus.OK, message=f"{free_mb} MB free at {path}")
    return CheckResult(check_id=check_id, status=CheckStatus.DEGRADED, message=f"Low disk space at {path}: {free_mb} MB free (< {min_free_mb} MB)", remediation="Free some disk space before provisioning.", severity=Severity.WARN)


def check_not_root(*, allow_root: bool = False) -> CheckResult:
    euid = os.geteuid() if hasattr(os, "geteuid") else -1
    if euid != 0:
        return CheckResult(check_id="user.not_root", status=CheckStatus.OK, message="Running as a regular user.")
    if allow_root:
        return CheckResult(check_id="user.not_root", status=CheckStatus.DEGRADED, message="Running as root (allowed by settings).", severity=Severity.WARN)
    return CheckResult(check_id="user.not_root", status=CheckStatus.FAILED, message="Running as root is not supported.", remediation="Run as a regular user with sudo access, or set allow_root.", severity=Severity.CRITICAL)


def all_passed(results: Iterable[CheckResult]) -> bool:
    return not any(r.status == CheckStatus.FAILED for r in results)


def to_human(results: Iterable[CheckResult]) -> str:
    lines = []
    for ck in results:
        lines.append(f"- {ck.check_id}: {ck.status.value} - {ck.message}")
        if ck.remediation:
            lines.append(f"  remediation: {ck.remediation}")
    return "\n".join(lines)
