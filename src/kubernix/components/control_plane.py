# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubernix/components/control_plane.py

from __future__ import annotations

import logging

from ..errors import KubernixError
from ..network import API_PORT
from .base import ClusterContext, Component, launch
from .registry import spec

log = logging.getLogger("kubernix")


def start_etcd(cluster: ClusterContext) -> Component:
    log.info("Starting etcd")
    s = spec("etcd")
    plan, pki = cluster.plan, cluster.pki
    data_dir = cluster.directory(s) / "run"

    argv = [
        s.binary,
        f"--advertise-client-urls=https://{plan.etcd_client}",
        "--client-cert-auth",
        f"--data-dir={data_dir}",
        f"--initial-advertise-peer-urls=https://{plan.etcd_peer}",
        "--initial-cluster-state=new",
        "--initial-cluster-token=etcd-cluster",
        f"--initial-cluster=etcd=https://{plan.etcd_peer}",
        f"--listen-client-urls=https://{plan.etcd_client}",
        f"--listen-peer-urls=https://{plan.etcd_peer}",
        "--name=etcd",
        "--peer-client-cert-auth",
        f"--cert-file={pki.apiserver.cert}",
        f"--key-file={pki.apiserver.key}",
        f"--peer-cert-file={pki.apiserver.cert}",
        f"--peer-key-file={pki.apiserver.key}",
        f"--peer-trusted-ca-file={pki.ca.cert}",
        f"--trusted-ca-file={pki.ca.cert}",
    ]
    child = launch(cluster, s, argv)
    log.info("etcd is ready")
    return Component(s, child)


def start_apiserver(cluster: ClusterContext) -> Component:
    log.info("Starting API Server")
    s = spec("apiserver")
    plan, pki = cluster.plan, cluster.pki
    directory = cluster.directory(s)

    argv = [
        s.binary,
        "--allow-privileged=true",
        "--audit-log-maxage=30",
        "--audit-log-maxbackup=3",
        "--audit-log-maxsize=100",
        f"--audit-log-path={directory / 'audit.log'}",
        "--authorization-mode=Node,RBAC",
        "--bind-address=0.0.0.0",
        f"--secure-port={API_PORT}",
        f"--advertise-address={plan.host_ip}",
        f"--client-ca-file={pki.ca.cert}",
        f"--etcd-cafile={pki.ca.cert}",
        f"--etcd-certfile={pki.apiserver.cert}",
        f"--etcd-keyfile={pki.apiserver.key}",
        f"--etcd-servers=https://{plan.etcd_client}",
        "--event-ttl=1h",
        f"--encryption-provider-config={cluster.encryption_config}",
        f"--kubelet-certificate-authority={pki.ca.cert}",
        f"--kubelet-client-certificate={pki.apiserver.cert}",
        f"--kubelet-client-key={pki.apiserver.key}",
        "--runtime-config=api/all=true",
        f"--service-account-key-file={pki.service_account.cert}",
        f"--service-account-signing-key-file={pki.service_account.key}",
        "--service-account-issuer=https://kubernetes.default.svc.cluster.local",
        f"--service-cluster-ip-range={plan.service_cidr}",
        f"--tls-cert-file={pki.apiserver.cert}",
        f"--tls-private-key-file={pki.apiserver.key}",
        "--v=2",
    ]
    child = launch(cluster, s, argv)
    component = Component(s, child)
    try:
        setup_rbac(cluster)
    except KubernixError:
        component.stop()
        raise
    log.info("API Server is ready")
    return component


def setup_rbac(cluster: ClusterContext) -> None:
    """Allow the apiserver to reach the kubelet API (logs, exec, metrics)."""
    log.debug("Creating API Server RBAC rule for kubelet")
    target = cluster.directory(spec("apiserver")) / "rbac.yml"
    if not target.exists():
        cluster.renderer.write("apiserver-rbac.yml", target)
    cluster.kubectl.apply(target)
    log.debug("API Server RBAC rule created")


def start_controller_manager(cluster: ClusterContext) -> Component:
    log.info("Starting Controller Manager")
    s = spec("controller-manager")
    plan, pki = cluster.plan, cluster.pki

    argv = [
        s.binary,
        "--bind-address=0.0.0.0",
        f"--cluster-cidr={plan.cluster_cidr}",
        "--cluster-name=kubernetes",
        f"--cluster-signing-cert-file={pki.ca.cert}",
        f"--cluster-signing-key-file={pki.ca.key}",
        f"--kubeconfig={cluster.kubeconfigs.controller_manager}",
        "--leader-elect=false",
        f"--root-ca-file={pki.ca.cert}",
        f"--service-account-private-key-file={pki.service_account.key}",
        f"--service-cluster-ip-range={plan.service_cidr}",
        "--use-service-account-credentials=true",
        "--v=2",
    ]
    child = launch(cluster, s, argv)
    log.info("Controller Manager is ready")
    return Component(s, child)


def start_scheduler(cluster: ClusterContext) -> Component:
    log.info("Starting Scheduler")
    s = spec("scheduler")
    config = cluster.directory(s) / "config.yml"
    if not config.exists():
        cluster.renderer.write(
            "scheduler.yml", config, {"kubeconfig": cluster.kubeconfigs.scheduler}
        )

    argv = [s.binary, f"--config={config}", "--v=2"]
    child = launch(cluster, s, argv)
    log.info("Scheduler is ready")
    return Component(s, child)
