# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubernix/utils/runner.py

from __future__ import annotations

import logging
import os
import subprocess
import time
from pathlib import Path
from typing import Mapping, Optional, Sequence

from ..errors import CommandError, PreconditionError
from ..logging.log import TRACE

log = logging.getLogger("kubernix")


class CommandRunner:
    """
    Runs one-shot external commands to completion.

    - Output is captured as text.
    - Raises CommandError on non-zero exit when check=True.
    - Tests substitute a fake with the same run() signature.
    """

    def __init__(self, *, label: str = "exec", env: Optional[Mapping[str, str]] = None):
        self.label = label
        self.env = dict(env) if env else None

    def run(
        self,
        argv: Sequence[str],
        *,
        stdin_text: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[Path] = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess:
        argv = [str(a) for a in argv]
        log.log(TRACE, "[%s] $ %s", self.label, " ".join(argv))

        merged = None
        if self.env or env:
            merged = {**os.environ, **(self.env or {}), **(env or {})}

        start = time.time()
        try:
            cp = subprocess.run(
                argv,
                input=stdin_text,
                capture_output=True,
                text=True,
                env=merged,
                cwd=str(cwd) if cwd else None,
                check=False,
            )
        except FileNotFoundError as e:
            raise PreconditionError(f"Unable to find executable '{argv[0]}'") from e

        elapsed = round(time.time() - start, 2)
        log.log(TRACE, "[%s] '%s' exited with rc=%s after %ss", self.label, argv[0], cp.returncode, elapsed)

        if check and cp.returncode != 0:
            log.debug("[%s] stdout: %s", self.label, (cp.stdout or "").strip())
            log.debug("[%s] stderr: %s", self.label, (cp.stderr or "").strip())
            raise CommandError(argv, cp.returncode, cp.stdout or "", cp.stderr or "")
        return cp
