# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubernix/config/loader.py

import logging
import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from ..errors import PreconditionError
from .models import Settings

log = logging.getLogger("kubernix")

FILENAME = "kubernix.yml"


def config_file(root: Path) -> Path:
    return Path(root) / FILENAME


def load_config(path: str | Path) -> dict:
    raw = Path(path).read_text()

    # expand environment variables like ${HOME}
    expanded = os.path.expandvars(raw)

    data = yaml.safe_load(expanded) or {}
    if not isinstance(data, dict):
        raise PreconditionError(f"Unable to load config file '{path}': not a mapping")
    return data


def build_settings(**values) -> Settings:
    """Validate raw values into Settings, mapping validation errors to a precondition failure."""
    try:
        return Settings(**{k: v for k, v in values.items() if v is not None})
    except ValidationError as e:
        first = e.errors()[0]
        raise PreconditionError(first.get("msg", str(e)).removeprefix("Value error, ")) from e


def prepare_root(settings: Settings) -> Settings:
    """
    Create and canonicalize the root directory, then reconcile the persisted
    cluster shape:

    - no config file yet -> write the cluster-shaping fields
    - config file exists -> those fields are taken from the file
    """
    try:
        settings.root.mkdir(parents=True, exist_ok=True)
        root = settings.root.resolve(strict=True)
    except OSError as e:
        raise PreconditionError(f"Unable to create root directory: {e}") from e

    path = config_file(root)
    update = {"root": root}

    if path.exists():
        log.debug("Loading existing configuration from %s", path)
        stored = load_config(path)
        current = settings.persisted()
        for key, value in stored.items():
            if key in current and current[key] != value:
                log.warning(
                    "Using '%s=%s' from %s instead of '%s'", key, value, path, current[key]
                )
        merged = settings.model_dump()
        merged.update(stored)
        merged.update(update)
        return build_settings(**merged)

    try:
        path.write_text(yaml.safe_dump(settings.persisted(), sort_keys=True))
    except OSError as e:
        raise PreconditionError(f"Unable to write configuration to file: {e}") from e
    return settings.model_copy(update=update)
