# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubernix/kube/kubectl.py

from __future__ import annotations

import logging
import subprocess
import time
from pathlib import Path
from typing import Callable, List, Optional

from ..errors import CommandError, ProvisioningError
from ..utils.runner import CommandRunner

log = logging.getLogger("kubernix")


class KubectlError(ProvisioningError):
    pass


class Kubectl:
    """
    kubectl bound to one kubeconfig file.
    """

    def __init__(
        self,
        kubeconfig: Path,
        *,
        runner: Optional[CommandRunner] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.kubeconfig = Path(kubeconfig)
        self.runner = runner or CommandRunner(label="kubectl")
        self._sleep = sleep
        self._clock = clock

    def with_kubeconfig(self, kubeconfig: Path) -> "Kubectl":
        return Kubectl(kubeconfig, runner=self.runner, sleep=self._sleep, clock=self._clock)

    def execute(self, args: List[str]) -> subprocess.CompletedProcess:
        argv = ["kubectl", *args, "--kubeconfig", str(self.kubeconfig)]
        try:
            return self.runner.run(argv)
        except CommandError as e:
            raise KubectlError(f"kubectl {' '.join(args[:2])} failed: {e}") from e

    def config(self, args: List[str]) -> None:
        self.execute(["config", *args])

    def apply(self, path: Path) -> None:
        self.execute(["apply", "-f", str(path)])

    def wait_ready(self, app: str, *, namespace: str = "kube-system", timeout: float = 60.0, interval: float = 2.0) -> None:
        """Poll the pods labelled k8s-app=<app> until one reports 1/1 ready."""
        log.debug("Waiting for %s to be ready", app)
        start = self._clock()
        while self._clock() - start < timeout:
            cp = self.execute(
                ["get", "pods", f"-n={namespace}", f"-l=k8s-app={app}", "--no-headers"]
            )
            out = cp.stdout or ""
            fields = out.split()
            elapsed = int(self._clock() - start)
            if len(fields) > 1:
                log.debug("%s status: %s (%d/%ds)", app, fields[1], elapsed, int(timeout))
                if "1/1" in out:
                    log.debug("%s ready", app)
                    return
            else:
                log.debug("%s status not available (%d/%ds)", app, elapsed, int(timeout))
            self._sleep(interval)
        raise KubectlError(f"Unable to wait for {app} pod")
