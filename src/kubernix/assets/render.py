# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubernix/assets/render.py

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateNotFound

from ..errors import ProvisioningError

log = logging.getLogger("kubernix")

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"


class TemplateRenderer:
    def __init__(self, templates_dir: Optional[Path] = None):
        self.templates_dir = templates_dir or TEMPLATES_DIR
        self.env = Environment(
            loader=FileSystemLoader(str(self.templates_dir)),
            undefined=StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )

    def render(self, template_name: str, context: Optional[Dict[str, Any]] = None) -> str:
        try:
            tmpl = self.env.get_template(f"{template_name}.j2")
        except TemplateNotFound as e:
            raise ProvisioningError(f"Unknown asset template '{template_name}'") from e
        return tmpl.render(**(context or {}))

    def write(self, template_name: str, target: Path, context: Optional[Dict[str, Any]] = None) -> Path:
        content = self.render(template_name, context)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)
        log.debug("Rendered %s to %s", template_name, target)
        return target
