# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubernix/config/models.py

from __future__ import annotations

from ipaddress import IPv4Network
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

LogLevel = Literal["trace", "debug", "info", "warn", "error", "off"]
Runtime = Literal["podman", "docker", "none"]

# Fields that decide the shape of the cluster and therefore of the PKI.
PERSISTED_FIELDS = ("cidr", "nodes", "container_runtime", "overlay", "packages")


class Settings(BaseModel):
    """Immutable input of a kubernix run."""

    model_config = ConfigDict(frozen=True)

    root: Path = Path("kubernix-run")
    log_level: LogLevel = "info"
    log_dir: Path = Path("log")
    cidr: IPv4Network = IPv4Network("10.10.0.0/16")
    nodes: int = Field(default=1, ge=1, le=255)
    container_runtime: Runtime = "none"
    overlay: Optional[Path] = None
    packages: List[str] = Field(default_factory=list)
    no_shell: bool = False
    readiness_timeout: float = Field(default=30.0, gt=0)

    @field_validator("cidr")
    @classmethod
    def _cidr_large_enough(cls, v: IPv4Network) -> IPv4Network:
        if v.prefixlen > 24:
            raise ValueError(
                f"Specified IP network {v} is too small, please use at least a /24 subnet"
            )
        return v

    @model_validator(mode="after")
    def _runtime_for_nodes(self) -> "Settings":
        if self.nodes > 1 and self.container_runtime == "none":
            raise ValueError(
                f"Running {self.nodes} nodes requires a container runtime (podman or docker)"
            )
        return self

    # Helpers
    @property
    def log_path(self) -> Path:
        return self.root / self.log_dir

    @property
    def multi_node(self) -> bool:
        return self.nodes > 1 and self.container_runtime != "none"

    def persisted(self) -> dict:
        data = self.model_dump(mode="json", include=set(PERSISTED_FIELDS))
        if data.get("overlay") is None:
            data.pop("overlay", None)
        return data
