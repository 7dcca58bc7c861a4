"""StrategyContext — explicit lifecycle for one strategy instance.

CREATED -> CONFIGURED -> RUNNING -> STOPPED

configure() validates thresholds, start() runs every reset hook so no state
survives from a previous run, stop() runs teardown hooks once.
"""

from __future__ import annotations

import logging
from typing import Callable

from pivot_matrix.core.types import StrategyStage
from pivot_matrix.config.settings import StrategySettings

logger = logging.getLogger(__name__)


class StrategyContext:
    def __init__(self) -> None:
        self._stage = StrategyStage.CREATED
        self._settings: StrategySettings | None = None
        self._reset_hooks: list[Callable[[], None]] = []
        self._teardown_hooks: list[Callable[[], None]] = []

    @property
    def stage(self) -> StrategyStage:
        return self._stage

    @property
    def settings(self) -> StrategySettings:
        if self._settings is None:
            raise RuntimeError("StrategyContext not configured. Call configure() first.")
        return self._settings

    @property
    def is_running(self) -> bool:
        return self._stage == StrategyStage.RUNNING

    def configure(self, settings: StrategySettings) -> None:
        if self._stage == StrategyStage.RUNNING:
            raise RuntimeError("Cannot reconfigure a running strategy.")
        errors = settings.validate()
        if errors:
            raise ValueError("Invalid strategy settings: " + "; ".join(errors))
        self._settings = settings
        self._stage = StrategyStage.CONFIGURED
        logger.debug("Configured: %s", settings.as_dict())

    def add_reset_hook(self, hook: Callable[[], None]) -> None:
        self._reset_hooks.append(hook)

    def add_teardown_hook(self, hook: Callable[[], None]) -> None:
        self._teardown_hooks.append(hook)

    def start(self) -> None:
        if self._stage != StrategyStage.CONFIGURED:
            raise RuntimeError(f"Cannot start from stage {self._stage.name}.")
        for hook in self._reset_hooks:
            hook()
        self._stage = StrategyStage.RUNNING
        logger.info("Strategy running (%s)", self.settings.protocol.value)

    def stop(self) -> None:
        if self._stage != StrategyStage.RUNNING:
            return
        for hook in reversed(self._teardown_hooks):
            hook()
        self._stage = StrategyStage.STOPPED
        logger.info("Strategy stopped")

    def require_running(self) -> None:
        if self._stage != StrategyStage.RUNNING:
            raise RuntimeError(f"Strategy not running (stage {self._stage.name}). Call start() first.")
