# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubernix/components/registry.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple


@dataclass(frozen=True)
class ComponentSpec:
    name: str
    binary: str
    # any of these substrings in a log line means "ready"
    markers: Tuple[str, ...]
    directory: str
    per_node: bool = False


COMPONENTS: Dict[str, ComponentSpec] = {
    s.name: s
    for s in (
        ComponentSpec("etcd", "etcd", ("ready to serve client requests",), "etcd"),
        ComponentSpec("apiserver", "kube-apiserver", ("etcd ok",), "api-server"),
        ComponentSpec(
            "controller-manager",
            "kube-controller-manager",
            ("Serving securely",),
            "controller-manager",
        ),
        ComponentSpec("scheduler", "kube-scheduler", ("Serving securely",), "scheduler"),
        ComponentSpec("crio", "crio", ("sandboxes:",), "crio", per_node=True),
        ComponentSpec(
            "kubelet", "kubelet", ("Successfully registered node",), "kubelet", per_node=True
        ),
        # kube-proxy has logged both spellings across releases
        ComponentSpec(
            "proxy",
            "kube-proxy",
            ("Caches are synched", "Caches are synced"),
            "proxy",
            per_node=True,
        ),
    )
}

CONTROL_PLANE = ("etcd", "apiserver", "controller-manager", "scheduler")
NODE = ("crio", "kubelet", "proxy")


def spec(name: str) -> ComponentSpec:
    try:
        return COMPONENTS[name]
    except KeyError:
        raise KeyError(f"Unknown component '{name}'") from None
