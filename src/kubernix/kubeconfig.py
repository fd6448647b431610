# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubernix/kubeconfig.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from ipaddress import IPv4Address
from pathlib import Path
from typing import List, Optional, Tuple

from .config.models import Settings
from .kube.kubectl import Kubectl, KubectlError
from .network import LOCALHOST, NetworkPlan
from .pki import Identity, PkiBundle

log = logging.getLogger("kubernix")

CLUSTER = "kubernetes"
CONTEXT = "default"


@dataclass(frozen=True)
class KubeconfigBundle:
    admin: Path
    kubelets: Tuple[Path, ...]
    proxy: Path
    controller_manager: Path
    scheduler: Path

    @property
    def kubelet(self) -> Path:
        return self.kubelets[0]

    def files(self) -> List[Path]:
        return [self.admin, *self.kubelets, self.proxy, self.controller_manager, self.scheduler]


def kubeconfig_dir(settings: Settings) -> Path:
    return settings.root / "kubeconfig"


def kubelet_file(directory: Path, identity: Identity, nodes: int) -> Path:
    if nodes == 1:
        return directory / "kubelet.kubeconfig"
    return directory / f"kubelet-{identity.name}.kubeconfig"


def setup_kubeconfig(kubectl: Kubectl, target: Path, identity: Identity, ca: Identity, server: IPv4Address) -> Path:
    log.debug("Creating kubeconfig for %s", identity.name)
    k = kubectl.with_kubeconfig(target)
    embed_certs = "--embed-certs=true"
    try:
        k.config(
            [
                "set-cluster",
                CLUSTER,
                f"--certificate-authority={ca.cert}",
                f"--server=https://{server}:6443",
                embed_certs,
            ]
        )
        k.config(
            [
                "set-credentials",
                identity.user,
                f"--client-certificate={identity.cert}",
                f"--client-key={identity.key}",
                embed_certs,
            ]
        )
        k.config(["set-context", CONTEXT, f"--cluster={CLUSTER}", f"--user={identity.user}"])
        k.config(["use-context", CONTEXT])
    except KubectlError as e:
        raise KubectlError(f"Unable to create kubeconfig for {identity.name}: {e}") from e
    log.debug("Kubeconfig created for %s", identity.name)
    return target


def build(settings: Settings, plan: NetworkPlan, pki: PkiBundle, *, kubectl: Optional[Kubectl] = None) -> KubeconfigBundle:
    """Write all kubeconfigs; kubelets talk to the host IP, everyone else to localhost."""
    log.info("Creating kubeconfigs")
    directory = kubeconfig_dir(settings)
    directory.mkdir(parents=True, exist_ok=True)
    kubectl = kubectl or Kubectl(directory / "admin.kubeconfig")

    def local(name: str, identity: Identity) -> Path:
        return setup_kubeconfig(kubectl, directory / f"{name}.kubeconfig", identity, pki.ca, LOCALHOST)

    kubelets = tuple(
        setup_kubeconfig(
            kubectl,
            kubelet_file(directory, identity, len(pki.kubelets)),
            identity,
            pki.ca,
            plan.host_ip,
        )
        for identity in pki.kubelets
    )

    return KubeconfigBundle(
        kubelets=kubelets,
        proxy=local("kube-proxy", pki.proxy),
        controller_manager=local("kube-controller-manager", pki.controller_manager),
        scheduler=local("kube-scheduler", pki.scheduler),
        admin=local("admin", pki.admin),
    )
