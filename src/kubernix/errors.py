# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubernix/errors.py
from __future__ import annotations

from typing import Sequence


class KubernixError(RuntimeError):
    """Base class for every failure kubernix reports to the user."""


class PreconditionError(KubernixError):
    """Missing binary, invalid settings, unparsable host state."""


class ProvisioningError(KubernixError):
    """Certificate, kubeconfig or asset generation failed."""


class CommandError(ProvisioningError):
    """An external command returned a non-zero exit code."""

    def __init__(self, argv: Sequence[str], returncode: int, stdout: str = "", stderr: str = ""):
        self.argv = list(argv)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        detail = (stderr or stdout or "").strip()
        msg = f"'{self.argv[0] if self.argv else '?'}' failed (rc={returncode})"
        if detail:
            msg += f": {detail.splitlines()[-1]}"
        super().__init__(msg)


class ReadinessError(KubernixError):
    """A child did not print its readiness marker in time."""


class UnexpectedExitError(KubernixError):
    """A watched child terminated before it was asked to stop."""


class TeardownError(KubernixError):
    """One or more stop operations failed."""

    def __init__(self, failures: Sequence[str]):
        self.failures = list(failures)
        super().__init__(f"{len(self.failures)} teardown failure(s): " + "; ".join(self.failures))


class UserCancelled(KubernixError):
    """A termination signal was caught."""

    def __init__(self, signum: int):
        self.signum = signum
        super().__init__(f"Interrupted by signal {signum}")
