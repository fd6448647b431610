# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubernix/components/node.py

from __future__ import annotations

import logging
from pathlib import Path
from typing import List

from ..errors import CommandError, PreconditionError, TeardownError
from ..process import ChildProcess
from ..system import System
from ..utils.runner import CommandRunner
from .base import ClusterContext, Component, launch
from .registry import ComponentSpec, spec

log = logging.getLogger("kubernix")

RUNTIME_ENV = "CONTAINER_RUNTIME_ENDPOINT"
MAX_SOCKET_PATH = 100

KUBELET_PORT = 11250
KUBELET_HEALTHZ_PORT = 12250
PROXY_HEALTHZ_PORT = 10256
PROXY_METRICS_PORT = 10249


class CriSocket:
    """Unix socket path of a CRI-O instance."""

    def __init__(self, path: Path):
        if len(str(path)) > MAX_SOCKET_PATH:
            raise PreconditionError(f"Socket path '{path}' is too long")
        self.path = path

    def endpoint(self) -> str:
        return f"unix://{self.path}"

    def __str__(self) -> str:
        return str(self.path)


def crio_socket(cluster: ClusterContext, node: str) -> CriSocket:
    return CriSocket(cluster.directory(spec("crio"), node) / "crio.sock")


def _wrap(cluster: ClusterContext, node: str, argv: List[str], *, entrypoint: bool) -> List[str]:
    if not cluster.multi_node:
        return argv
    if entrypoint:
        cluster.container.remove(node)
        return cluster.container.run_argv(node, argv)
    return cluster.container.exec_argv(node, argv)


class CrioComponent(Component):
    def __init__(self, s: ComponentSpec, process: ChildProcess, node: str, socket: CriSocket, runner: CommandRunner):
        super().__init__(s, process, node)
        self.socket = socket
        self.runner = runner

    def remove_all_pods(self) -> None:
        log.debug("Removing all CRI-O workloads on %s", self.node)
        env = {RUNTIME_ENV: self.socket.endpoint()}
        cp = self.runner.run(["crictl", "pods", "-q"], env=env)
        for pod in cp.stdout.split():
            log.debug("Removing pod %s on %s", pod, self.node)
            self.runner.run(["crictl", "rmp", "-f", pod], env=env)
        log.debug("All workloads removed on %s", self.node)

    def stop(self) -> None:
        failure = None
        try:
            self.remove_all_pods()
        except CommandError as e:
            failure = f"Unable to remove CRI-O containers on {self.node}: {e}"
        finally:
            # the process is stopped even if the pods could not be removed
            self.process.stop()
        if failure:
            raise TeardownError([failure])


def start_crio(cluster: ClusterContext, index: int) -> CrioComponent:
    node = cluster.plan.nodes[index]
    log.info("Starting CRI-O (%s)", node)
    s = spec("crio")
    directory = cluster.directory(s, node)
    socket = crio_socket(cluster, node)
    config = directory / "crio.conf"
    network_dir = directory / "cni"

    if not config.exists():
        loopback = System.find_executable("loopback")
        containers = directory / "containers"
        cluster.renderer.write(
            "crio.conf",
            config,
            {
                "log_dir": directory / "log",
                "containers_root": containers / "storage",
                "containers_runroot": containers / "run",
                "storage_driver": "vfs" if cluster.multi_node else "overlay",
                "version_file": directory / "version",
                "listen": socket,
                "conmon": System.find_executable("conmon"),
                "exits_dir": directory / "exits",
                "runtime_path": System.find_executable("runc"),
                "runtime_root": directory / "runc",
                "signature_policy": cluster.root / "policy.json",
                "network_dir": network_dir,
                "plugin_dir": loopback.parent,
            },
        )
        cluster.renderer.write(
            "bridge.json",
            network_dir / "bridge.json",
            {
                "node": node,
                "bridge": cluster.plan.bridge(index),
                "cidr": cluster.plan.crio_cidrs()[index],
            },
        )

    argv = _wrap(cluster, node, [s.binary, f"--config={config}"], entrypoint=True)
    child = launch(cluster, s, argv, node=node)
    log.info("CRI-O is ready (%s)", node)
    return CrioComponent(s, child, node, socket, cluster.runner)


def start_kubelet(cluster: ClusterContext, index: int) -> Component:
    node = cluster.plan.nodes[index]
    log.info("Starting Kubelet (%s)", node)
    s = spec("kubelet")
    directory = cluster.directory(s, node)
    root_dir = directory / "run"
    if len(str(root_dir)) + len("kubelet.sock") > MAX_SOCKET_PATH:
        raise PreconditionError(f"Kubelet run path '{root_dir}' is too long for kubelet.sock")

    identity = cluster.pki.kubelet(index)
    config = directory / "config.yml"
    if not config.exists():
        cluster.renderer.write(
            "kubelet.yml",
            config,
            {
                "ca": cluster.pki.ca.cert,
                "dns": cluster.plan.dns_ip,
                "cidr": cluster.plan.crio_cidrs()[index],
                "cert": identity.cert,
                "key": identity.key,
                "port": KUBELET_PORT + index,
                "healthz_port": KUBELET_HEALTHZ_PORT + index,
            },
        )

    argv = [
        s.binary,
        f"--config={config}",
        f"--hostname-override={node}",
        f"--root-dir={root_dir}",
        f"--container-runtime-endpoint={crio_socket(cluster, node).endpoint()}",
        f"--kubeconfig={cluster.kubeconfigs.kubelets[index]}",
        "--v=2",
    ]
    argv = _wrap(cluster, node, argv, entrypoint=False)
    child = launch(cluster, s, argv, node=node)
    log.info("Kubelet is ready (%s)", node)
    return Component(s, child, node)


def start_proxy(cluster: ClusterContext, index: int) -> Component:
    node = cluster.plan.nodes[index]
    log.info("Starting Proxy (%s)", node)
    s = spec("proxy")
    config = cluster.directory(s, node) / "config.yml"
    if not config.exists():
        cluster.renderer.write(
            "proxy.yml",
            config,
            {
                "kubeconfig": cluster.kubeconfigs.proxy,
                "cluster_cidr": cluster.plan.cluster_cidr,
                "healthz_port": PROXY_HEALTHZ_PORT + index,
                "metrics_port": PROXY_METRICS_PORT + index,
                "hostname": node,
            },
        )

    argv = _wrap(
        cluster,
        node,
        [s.binary, f"--config={config}", f"--hostname-override={node}"],
        entrypoint=False,
    )
    child = launch(cluster, s, argv, node=node)
    log.info("Proxy is ready (%s)", node)
    return Component(s, child, node)
