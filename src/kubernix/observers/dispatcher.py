# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubernix/observers/dispatcher.py
from __future__ import annotations

import logging
from typing import List

from .events import BaseEvent

log = logging.getLogger("kubernix")


class EventBus:
    def __init__(self, observers: List = None):
        self._observers = observers or []

    def subscribe(self, observer) -> None:
        self._observers.append(observer)

    def emit(self, event: BaseEvent) -> None:
        for ob in self._observers:
            try:
                ob.notify(event)
            except Exception as e:
                # observers must not break a run
                log.debug("Observer %s failed on %s: %s", ob, type(event).__name__, e)
