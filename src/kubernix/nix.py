# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubernix/nix.py

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import sys
from pathlib import Path
from typing import List, Mapping, Optional, Sequence

from .assets.render import TemplateRenderer
from .config.models import Settings
from .errors import PreconditionError

log = logging.getLogger("kubernix")

NIX_DIR = "nix"
NIX_ENV = "IN_NIX"


def is_active(environ: Optional[Mapping[str, str]] = None) -> bool:
    return NIX_ENV in (os.environ if environ is None else environ)


def available() -> bool:
    return shutil.which("nix") is not None


def nix_dir(settings: Settings) -> Path:
    return settings.root / NIX_DIR


def write_expressions(settings: Settings, renderer: Optional[TemplateRenderer] = None) -> Path:
    renderer = renderer or TemplateRenderer()
    directory = nix_dir(settings)
    directory.mkdir(parents=True, exist_ok=True)

    if settings.packages:
        log.debug("Adding additional packages: %s", " ".join(settings.packages))
    renderer.write("default.nix", directory / "default.nix", {"packages": settings.packages})

    target = directory / "overlay.nix"
    if settings.overlay is not None:
        log.info("Using custom overlay '%s'", settings.overlay)
        try:
            shutil.copyfile(settings.overlay, target)
        except OSError as e:
            raise PreconditionError(f"Unable to copy overlay '{settings.overlay}': {e}") from e
    else:
        log.debug("Using default overlay")
        renderer.write("overlay.nix", target)
    return directory


def run_argv(settings: Settings, args: Sequence[str]) -> List[str]:
    return ["nix", "run", "-f", str(nix_dir(settings)), "-c", *args]


def self_argv(settings: Settings) -> List[str]:
    """Re-invoke this program with the same settings."""
    argv = [sys.executable, "-m", "kubernix.cli.app", "--root", str(settings.root)]
    argv += ["--log-level", settings.log_level]
    if settings.no_shell:
        argv.append("--no-shell")
    return argv


def bootstrap(settings: Settings, *, renderer: Optional[TemplateRenderer] = None) -> int:
    """
    Write the nix expressions below root and run kubernix again inside that
    environment. Returns the exit code of the inner run.
    """
    write_expressions(settings, renderer)
    argv = run_argv(settings, self_argv(settings))
    log.info("Entering nix environment")
    log.debug("Running: %s", " ".join(argv))
    cp = subprocess.run(argv, env={**os.environ, NIX_ENV: "true"}, check=False)
    return cp.returncode
