# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubernix/pki.py

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from .assets.render import TemplateRenderer
from .config.models import Settings
from .errors import CommandError, ProvisioningError
from .network import LOCALHOST, NetworkPlan
from .utils.runner import CommandRunner

log = logging.getLogger("kubernix")

PROFILE = "kubernetes"

KUBERNETES_NAMES = (
    "kubernetes",
    "kubernetes.default",
    "kubernetes.default.svc",
    "kubernetes.default.svc.cluster",
    "kubernetes.svc.cluster.local",
)


@dataclass(frozen=True)
class Identity:
    name: str
    user: str
    cert: Path
    key: Path

    @classmethod
    def at(cls, directory: Path, name: str, user: str) -> "Identity":
        return cls(
            name=name,
            user=user,
            cert=directory / f"{name}.pem",
            key=directory / f"{name}-key.pem",
        )


@dataclass(frozen=True)
class CertRole:
    """One row of the identity table: who the certificate is for and what it claims."""

    role: str
    name: str
    cn: str
    o: str


CA_ROLE = CertRole("ca", "ca", "kubernetes", "kubernetes")

ROLES: Tuple[CertRole, ...] = (
    CertRole("admin", "admin", "admin", "system:masters"),
    CertRole("apiserver", "kubernetes", "kubernetes", "kubernetes"),
    CertRole(
        "controller-manager",
        "kube-controller-manager",
        "system:kube-controller-manager",
        "system:kube-controller-manager",
    ),
    CertRole("scheduler", "kube-scheduler", "system:kube-scheduler", "system:kube-scheduler"),
    CertRole("proxy", "kube-proxy", "system:kube-proxy", "system:node-proxier"),
    CertRole("service-account", "service-account", "service-accounts", "kubernetes"),
)


def kubelet_role(node: str) -> CertRole:
    return CertRole(f"kubelet-{node}", node, f"system:node:{node}", "system:nodes")


@dataclass(frozen=True)
class PkiBundle:
    directory: Path
    ca: Identity
    admin: Identity
    apiserver: Identity
    controller_manager: Identity
    scheduler: Identity
    proxy: Identity
    service_account: Identity
    kubelets: Tuple[Identity, ...]

    def identities(self) -> List[Identity]:
        """Every identity signed by the CA."""
        return [
            self.admin,
            self.apiserver,
            self.controller_manager,
            self.scheduler,
            self.proxy,
            self.service_account,
            *self.kubelets,
        ]

    def kubelet(self, index: int) -> Identity:
        try:
            return self.kubelets[index]
        except IndexError:
            raise ProvisioningError(f"No kubelet identity for node {index}") from None


def pki_dir(settings: Settings) -> Path:
    return settings.root / "pki"


def roles_for(plan: NetworkPlan) -> List[CertRole]:
    return [*ROLES, *(kubelet_role(n) for n in plan.nodes)]


def hostnames_for(role: CertRole, plan: NetworkPlan) -> List[str]:
    if role.role == "apiserver":
        return [
            str(plan.api_ip),
            str(LOCALHOST),
            plan.hostname,
            str(plan.host_ip),
            *KUBERNETES_NAMES,
            *(n for n in plan.nodes if n != plan.hostname),
        ]
    if role.role.startswith("kubelet-"):
        # serving certificate of the kubelet
        return [role.name, str(plan.host_ip), str(LOCALHOST)]
    return []


def bundle_at(directory: Path, plan: NetworkPlan) -> PkiBundle:
    ident: Dict[str, Identity] = {
        r.role: Identity.at(directory, r.name, r.cn) for r in (CA_ROLE, *ROLES)
    }
    return PkiBundle(
        directory=directory,
        ca=ident["ca"],
        admin=ident["admin"],
        apiserver=ident["apiserver"],
        controller_manager=ident["controller-manager"],
        scheduler=ident["scheduler"],
        proxy=ident["proxy"],
        service_account=ident["service-account"],
        kubelets=tuple(
            Identity.at(directory, r.name, r.cn) for r in (kubelet_role(n) for n in plan.nodes)
        ),
    )


class PkiBuilder:
    def __init__(
        self,
        directory: Path,
        *,
        runner: Optional[CommandRunner] = None,
        renderer: Optional[TemplateRenderer] = None,
    ):
        self.directory = directory
        self.runner = runner or CommandRunner(label="pki")
        self.renderer = renderer or TemplateRenderer()

    @property
    def ca_config(self) -> Path:
        return self.directory / "ca-config.json"

    def _csr(self, role: CertRole) -> Path:
        return self.renderer.write(
            "csr.json", self.directory / f"{role.name}-csr.json", {"cn": role.cn, "o": role.o}
        )

    def _cfssljson(self, name: str, gencert_output: str) -> None:
        self.runner.run(
            ["cfssljson", "-bare", name], stdin_text=gencert_output, cwd=self.directory
        )

    def setup_ca(self) -> None:
        log.debug("Creating CA certificates")
        self.renderer.write("ca-config.json", self.ca_config)
        csr = self._csr(CA_ROLE)
        cp = self.runner.run(["cfssl", "gencert", "-initca", str(csr)], cwd=self.directory)
        self._cfssljson(CA_ROLE.name, cp.stdout)
        log.debug("CA certificates created")

    def generate(self, role: CertRole, ca: Identity, hostnames: Sequence[str] = ()) -> None:
        log.debug("Creating certificate for %s", role.name)
        csr = self._csr(role)
        argv = [
            "cfssl",
            "gencert",
            f"-ca={ca.cert}",
            f"-ca-key={ca.key}",
            f"-config={self.ca_config}",
            f"-profile={PROFILE}",
        ]
        if hostnames:
            argv.append(f"-hostname={','.join(hostnames)}")
        argv.append(str(csr))
        cp = self.runner.run(argv, cwd=self.directory)
        self._cfssljson(role.name, cp.stdout)
        log.debug("Certificate created for %s", role.name)


def ensure(
    settings: Settings,
    plan: NetworkPlan,
    *,
    runner: Optional[CommandRunner] = None,
    renderer: Optional[TemplateRenderer] = None,
) -> PkiBundle:
    """
    Return the PKI for this cluster, generating it only when <root>/pki does
    not exist yet. Existing certificates are never rewritten.
    """
    directory = pki_dir(settings)
    bundle = bundle_at(directory, plan)

    if directory.exists():
        log.info("PKI directory already exists, skipping generation")
        missing = [i.name for i in (bundle.ca, *bundle.identities()) if not i.cert.exists()]
        if missing:
            log.warning("Reused PKI lacks certificates for: %s", ", ".join(missing))
        return bundle

    log.info("Generating certificates")
    directory.mkdir(parents=True)
    builder = PkiBuilder(directory, runner=runner, renderer=renderer)
    try:
        builder.setup_ca()
        for role in roles_for(plan):
            builder.generate(role, bundle.ca, hostnames_for(role, plan))
    except CommandError as e:
        shutil.rmtree(directory, ignore_errors=True)
        raise ProvisioningError(f"Unable to generate certificates: {e}") from e
    except BaseException:
        # never leave a half written PKI behind to be reused
        shutil.rmtree(directory, ignore_errors=True)
        raise

    log.debug("PKI created in %s", directory)
    return bundle
