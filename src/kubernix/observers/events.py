# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubernix/observers/events.py

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class BaseEvent:
    ts: str        # ISO timestamp
    run_id: str    # correlates all events of one kubernix invocation
    root: str      # cluster root directory

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def new_ctx(root: str, run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": datetime.utcnow().isoformat(timespec="seconds") + "Z",
        "run_id": run_id or str(uuid.uuid4()),
        "root": root,
    }


def stamp(ctx: Dict[str, Any]) -> Dict[str, Any]:
    """Same run context with a fresh timestamp."""
    return {**ctx, "ts": datetime.utcnow().isoformat(timespec="seconds") + "Z"}


# ----- Supervisor -----

@dataclass(frozen=True)
class StateChanged(BaseEvent):
    previous: str
    state: str


# ----- Per-component lifecycle -----

@dataclass(frozen=True)
class ComponentStarting(BaseEvent):
    name: str
    argv: List[str]
    log_file: str

@dataclass(frozen=True)
class ComponentReady(BaseEvent):
    name: str
    pid: int
    duration_ms: int

@dataclass(frozen=True)
class ComponentFailed(BaseEvent):
    name: str
    error: str

@dataclass(frozen=True)
class ComponentStopped(BaseEvent):
    name: str
    status: str       # "STOPPED" | "FAILED"
    error: Optional[str] = None


# ----- Provisioning -----

@dataclass(frozen=True)
class PkiReady(BaseEvent):
    reused: bool
    identities: List[str]

@dataclass(frozen=True)
class KubeconfigsReady(BaseEvent):
    files: List[str]


# ----- Summary -----

@dataclass(frozen=True)
class TeardownSummary(BaseEvent):
    stopped: int
    failed: int
