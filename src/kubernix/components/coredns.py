# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubernix/components/coredns.py

from __future__ import annotations

import logging

from .base import ClusterContext

log = logging.getLogger("kubernix")

DNS_APP = "kube-dns"


def apply_coredns(cluster: ClusterContext, *, timeout: float = 60.0) -> None:
    """One-shot addon: render the manifest, apply it, wait for the pod."""
    log.info("Deploying CoreDNS")
    target = cluster.root / "coredns" / "coredns.yml"
    cluster.renderer.write("coredns.yml", target, {"dns_ip": cluster.plan.dns_ip})
    cluster.kubectl.apply(target)
    cluster.kubectl.wait_ready(DNS_APP, timeout=timeout)
    log.info("CoreDNS deployed")
