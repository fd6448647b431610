# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubernix/network.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from ipaddress import IPv4Address, IPv4Network
from typing import Iterable, List, Optional, Tuple

from .config.models import Settings
from .errors import PreconditionError

log = logging.getLogger("kubernix")

BRIDGE_PREFIX = "kubernix"
BRIDGE_NAME = f"{BRIDGE_PREFIX}1"

API_PORT = 6443
ETCD_CLIENT = "127.0.0.1:2379"
ETCD_PEER = "127.0.0.1:2380"
LOCALHOST = IPv4Address("127.0.0.1")

MAX_PREFIX = 24


def node_names(nodes: int, hostname: str) -> Tuple[str, ...]:
    """A single node is named after the host, several are node-0..node-N."""
    if nodes == 1:
        return (hostname,)
    return tuple(f"node-{i}" for i in range(nodes))


@dataclass(frozen=True)
class NetworkPlan:
    cri_cidr: IPv4Network
    cluster_cidr: IPv4Network
    service_cidr: IPv4Network
    api_ip: IPv4Address
    dns_ip: IPv4Address
    hostname: str
    host_ip: IPv4Address
    nodes: Tuple[str, ...]
    bridge_name: str = BRIDGE_NAME
    etcd_client: str = ETCD_CLIENT
    etcd_peer: str = ETCD_PEER

    def crio_cidrs(self) -> List[IPv4Network]:
        """Split the CRI-O range evenly, one subnet per node."""
        count = len(self.nodes)
        if count == 1:
            return [self.cri_cidr]
        diff = (count - 1).bit_length()
        if self.cri_cidr.prefixlen + diff > 30:
            raise PreconditionError(
                f"CRI-O network {self.cri_cidr} is too small for {count} nodes"
            )
        subnets = self.cri_cidr.subnets(prefixlen_diff=diff)
        return [next(subnets) for _ in range(count)]

    def bridge(self, node: int) -> str:
        return f"{BRIDGE_PREFIX}{node + 1}"

    def server(self, address: IPv4Address) -> str:
        return f"https://{address}:{API_PORT}"


def overlapping_routes(cidr: IPv4Network, routes: Iterable[str]) -> List[IPv4Network]:
    """Routes whose destination contains cidr and which are not ours."""
    found = []
    for line in routes:
        tokens = line.split()
        if not tokens:
            continue
        if "dev" in tokens:
            idx = tokens.index("dev")
            if idx + 1 < len(tokens) and tokens[idx + 1].startswith(BRIDGE_PREFIX):
                continue
        try:
            dest = IPv4Network(tokens[0], strict=False)
        except ValueError:
            continue
        if cidr.subnet_of(dest):
            found.append(dest)
    return found


def plan(
    settings: Settings,
    *,
    hostname: str,
    host_ip: IPv4Address,
    routes: Optional[Iterable[str]] = None,
) -> NetworkPlan:
    """
    Partition the cluster CIDR:

    - cri_cidr: first half (prefix+1)
    - cluster_cidr: third quarter (prefix+2)
    - service_cidr: start of the fourth quarter (prefix+3)
    """
    cidr = settings.cidr
    if cidr.prefixlen > MAX_PREFIX:
        raise PreconditionError(
            f"Specified IP network {cidr} is too small, please use at least a /{MAX_PREFIX} subnet"
        )

    for dest in overlapping_routes(cidr, routes or []):
        log.warning(
            "There seems to be an overlapping IP route %s, the cluster may not work as expected",
            dest,
        )

    base = int(cidr.network_address)
    size = cidr.num_addresses
    prefix = cidr.prefixlen

    cri_cidr = IPv4Network((base, prefix + 1))
    cluster_cidr = IPv4Network((base + size // 2, prefix + 2))
    service_cidr = IPv4Network((base + 3 * size // 4, prefix + 3))
    log.debug("Using CRI-O CIDR %s", cri_cidr)
    log.debug("Using cluster CIDR %s", cluster_cidr)
    log.debug("Using service CIDR %s", service_cidr)

    return NetworkPlan(
        cri_cidr=cri_cidr,
        cluster_cidr=cluster_cidr,
        service_cidr=service_cidr,
        api_ip=service_cidr.network_address + 1,
        dns_ip=service_cidr.network_address + 2,
        hostname=hostname,
        host_ip=host_ip,
        nodes=node_names(settings.nodes, hostname),
    )
