# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubernix/encryption.py

from __future__ import annotations

import base64
import logging
import secrets
from pathlib import Path
from typing import Optional

from .assets.render import TemplateRenderer
from .config.models import Settings

log = logging.getLogger("kubernix")

KEY_BYTES = 32


def encryption_config_path(settings: Settings) -> Path:
    return settings.root / "encryption-config.yml"


def generate_key() -> str:
    return base64.b64encode(secrets.token_bytes(KEY_BYTES)).decode("ascii")


def ensure(settings: Settings, *, renderer: Optional[TemplateRenderer] = None) -> Path:
    """
    Write the apiserver encryption-at-rest config. An existing file keeps its
    key, otherwise secrets stored in etcd by a previous run become unreadable.
    """
    path = encryption_config_path(settings)
    if path.exists():
        log.debug("Reusing encryption config %s", path)
        return path

    log.info("Creating encryption config")
    renderer = renderer or TemplateRenderer()
    renderer.write("encryption-config.yml", path, {"key": generate_key()})
    path.chmod(0o600)
    return path
