# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubernix/container.py

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Sequence

from .assets.render import TemplateRenderer
from .config.models import Settings
from .errors import CommandError, ProvisioningError
from .logging.log import TRACE, to_level
from .utils.runner import CommandRunner

log = logging.getLogger("kubernix")

IMAGE = "kubernix:base"
PREFIX = "kubernix"
# where the nix expression lives inside the image
IMAGE_ROOT = "kubernix"
DEV_MAPPER = Path("/dev/mapper")


def container_name(node: str) -> str:
    return f"{PREFIX}-{node}"


def policy_json(settings: Settings) -> Path:
    return settings.root / "policy.json"


def write_policy(settings: Settings, renderer: Optional[TemplateRenderer] = None) -> Path:
    """Image signature policy, read by CRI-O on every node and by podman builds."""
    renderer = renderer or TemplateRenderer()
    return renderer.write("policy.json", policy_json(settings))


class ContainerRuntime:
    """
    Wraps node processes into podman or docker containers.

    crio is the container entrypoint (`run`), kubelet and kube-proxy are
    executed inside the same container afterwards (`exec`).
    """

    def __init__(
        self,
        settings: Settings,
        *,
        runner: Optional[CommandRunner] = None,
        renderer: Optional[TemplateRenderer] = None,
        in_container: bool = False,
    ):
        self.settings = settings
        self.executable = settings.container_runtime
        self.runner = runner or CommandRunner(label=self.executable)
        self.renderer = renderer or TemplateRenderer()
        self.in_container = in_container

    @property
    def enabled(self) -> bool:
        return self.settings.multi_node

    @property
    def is_podman(self) -> bool:
        return self.executable == "podman"

    @property
    def cni_dir(self) -> Path:
        return self.settings.root / "podman"

    def default_args(self) -> List[str]:
        """Arguments every podman invocation gets."""
        if not self.is_podman:
            return []
        level = to_level(self.settings.log_level)
        podman_level = "debug" if level <= logging.DEBUG else self.settings.log_level
        args = [
            f"--log-level={podman_level}",
            f"--cni-config-dir={self.cni_dir}",
            "--events-backend=none",
            "--cgroup-manager=cgroupfs",
        ]
        if self.in_container:
            args.insert(1, "--storage-driver=vfs")
        return args

    # ------------------------------------------------------------------
    # Image
    # ------------------------------------------------------------------

    def write_policy(self) -> Path:
        return write_policy(self.settings, self.renderer)

    def image_exists(self) -> bool:
        cp = self.runner.run(
            [self.executable, *self.default_args(), "image", "inspect", IMAGE], check=False
        )
        return cp.returncode == 0

    def build(self) -> None:
        """Build the base image once; nothing to do unless nodes run in containers."""
        policy = self.write_policy()
        if not self.enabled:
            return

        if self.image_exists():
            log.info("Base container image '%s' already exists, skipping build", IMAGE)
            return

        log.info("Building base container image '%s'", IMAGE)
        dockerfile = self.settings.root / "Dockerfile"
        if not dockerfile.exists():
            self.renderer.write("Dockerfile", dockerfile, {"nix_dir": "nix", "root": IMAGE_ROOT})

        argv = [self.executable]
        if self.is_podman:
            self.renderer.write(
                "podman-bridge.conflist", self.cni_dir / "87-podman-bridge.conflist"
            )
            argv += [*self.default_args(), "build", f"--signature-policy={policy}"]
        else:
            argv.append("build")
        argv += [f"-t={IMAGE}", "."]
        log.log(TRACE, "Container runtime build args: %s", argv)

        try:
            self.runner.run(argv, cwd=self.settings.root)
        except CommandError as e:
            raise ProvisioningError(f"Unable to build container base image: {e}") from e
        log.info("Container base image built")

    # ------------------------------------------------------------------
    # Process wrapping
    # ------------------------------------------------------------------

    def remove(self, node: str) -> None:
        """Remove a possibly stale container, a missing one is fine."""
        self.runner.run(
            [self.executable, *self.default_args(), "rm", "-f", container_name(node)], check=False
        )

    def run_argv(self, node: str, argv: Sequence[str]) -> List[str]:
        root = self.settings.root
        args = [
            self.executable,
            *self.default_args(),
            "run",
            "--rm",
            "--net=host",
            "--privileged",
            f"--hostname={node}",
            f"--name={container_name(node)}",
            f"--volume={root}:{root}",
        ]
        if DEV_MAPPER.exists():
            args.append(f"--volume={DEV_MAPPER}:{DEV_MAPPER}")
        args.append(IMAGE)
        args.extend(str(a) for a in argv)
        log.log(TRACE, "Container runtime start args: %s", args)
        return args

    def exec_argv(self, node: str, argv: Sequence[str]) -> List[str]:
        args = [
            self.executable,
            *self.default_args(),
            "exec",
            container_name(node),
            "nix",
            "run",
            "-f",
            f"/{IMAGE_ROOT}",
            "-c",
            *(str(a) for a in argv),
        ]
        log.log(TRACE, "Container runtime exec args: %s", args)
        return args
