# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubernix/system.py

from __future__ import annotations

import logging
import os
import shutil
import socket
import time
from ipaddress import IPv4Address
from pathlib import Path
from typing import Iterable, List, Optional

from .errors import CommandError, PreconditionError
from .utils.runner import CommandRunner

log = logging.getLogger("kubernix")

KERNEL_MODULES = ("overlay", "br_netfilter", "ip_conntrack")

SYSCTLS = (
    "net.bridge.bridge-nf-call-ip6tables",
    "net.bridge.bridge-nf-call-iptables",
    "net.ipv4.conf.all.route_localnet",
    "net.ipv4.ip_forward",
)

# Any routable address works, nothing is sent.
ROUTE_PROBE = "1.2.3.4"

PROC_MOUNTS = Path("/proc/mounts")


class System:
    """Host discovery and preparation."""

    def __init__(self, runner: Optional[CommandRunner] = None):
        self.runner = runner or CommandRunner(label="system")

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def host_ip(self) -> IPv4Address:
        cp = self.runner.run(["ip", "route", "get", ROUTE_PROBE])
        tokens = cp.stdout.split()
        if len(tokens) < 7:
            raise PreconditionError(f"Unable to parse host IP from route: '{cp.stdout.strip()}'")
        try:
            return IPv4Address(tokens[6])
        except ValueError as e:
            raise PreconditionError(f"Host IP '{tokens[6]}' is not a valid IPv4 address") from e

    def hostname(self) -> str:
        name = socket.gethostname()
        if not name:
            raise PreconditionError("Unable to get hostname")
        return name

    def routes(self) -> List[str]:
        cp = self.runner.run(["ip", "route"])
        return [line for line in cp.stdout.splitlines() if line.strip()]

    @staticmethod
    def in_container() -> bool:
        return Path("/.dockerenv").exists() or Path("/run/.containerenv").exists()

    # ------------------------------------------------------------------
    # Preparation
    # ------------------------------------------------------------------

    def prepare(self) -> None:
        if self.in_container():
            log.info("Skipping modprobe and sysctl for sake of containerization")
            return
        for module in KERNEL_MODULES:
            self.modprobe(module)
        for key in SYSCTLS:
            self.sysctl_enable(key)

    def modprobe(self, module: str) -> None:
        log.debug("Loading kernel module '%s'", module)
        try:
            self.runner.run(["modprobe", module])
        except CommandError as e:
            raise PreconditionError(
                f"Unable to load '{module}' kernel module: {e.stderr.strip()}"
            ) from e

    def sysctl_enable(self, key: str) -> None:
        log.debug("Enabling sysctl '%s'", key)
        arg = f"{key}=1"
        try:
            cp = self.runner.run(["sysctl", "-w", arg])
        except CommandError as e:
            raise PreconditionError(f"Unable to set sysctl '{arg}': {e.stderr.strip()}") from e
        if cp.stderr and cp.stderr.strip():
            raise PreconditionError(f"Unable to set sysctl '{arg}': {cp.stderr.strip()}")

    # ------------------------------------------------------------------
    # Executables
    # ------------------------------------------------------------------

    @staticmethod
    def find_executable(name: str) -> Path:
        found = shutil.which(name)
        if not found:
            raise PreconditionError(f"Unable to find executable '{name}' in $PATH")
        return Path(found)

    @classmethod
    def verify_executables(cls, names: Iterable[str]) -> None:
        missing = [n for n in names if shutil.which(n) is None]
        if missing:
            raise PreconditionError(
                f"Unable to find executable(s) in $PATH: {', '.join(missing)}"
            )

    @classmethod
    def shell(cls) -> Path:
        name = os.environ.get("SHELL") or "sh"
        try:
            return cls.find_executable(name)
        except PreconditionError as e:
            raise PreconditionError(f"Unable to find system shell '{name}': {e}") from e

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def mounts_below(self, root: Path) -> List[Path]:
        try:
            lines = PROC_MOUNTS.read_text().splitlines()
        except OSError as e:
            log.debug("Unable to retrieve mounts: %s", e)
            return []
        found = []
        for line in lines:
            parts = line.split()
            if len(parts) < 2:
                continue
            dest = Path(parts[1].replace("\\040", " "))
            if dest != root and root in dest.parents:
                found.append(dest)
        # deepest first
        return sorted(found, key=lambda p: len(p.parts), reverse=True)

    def umount_below(self, root: Path, timeout: float = 5.0) -> None:
        log.debug("Removing active mounts")
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            mounts = self.mounts_below(root)
            if not mounts:
                return
            for dest in mounts:
                log.debug("Removing mount: %s", dest)
                cp = self.runner.run(["umount", "--force", str(dest)], check=False)
                if cp.returncode != 0:
                    log.debug("Unable to umount '%s': %s", dest, (cp.stderr or "").strip())
            time.sleep(0.2)
