# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

import logging
from ipaddress import IPv4Address
from pathlib import Path

import pytest

from kubernix.config.models import Settings
from kubernix.network import plan


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(root=tmp_path)


@pytest.fixture
def network(settings: Settings):
    return plan(settings, hostname="host", host_ip=IPv4Address("192.168.1.10"), routes=[])


@pytest.fixture
def kubernix_log(caplog):
    """Route the package logger into caplog even after init_logging disabled propagation."""
    logger = logging.getLogger("kubernix")
    old = logger.propagate
    logger.propagate = True
    caplog.set_level(logging.DEBUG, logger="kubernix")
    yield caplog
    logger.propagate = old
