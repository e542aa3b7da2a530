"""Application state container."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .settings import AggregatorSettings


@dataclass
class AppState:
    """Settings and logger handed from the CLI to each command."""

    settings: AggregatorSettings
    logger: logging.Logger
