"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules.
"""

from __future__ import annotations

from functools import lru_cache
from typing import TYPE_CHECKING

from config.settings import get_settings
from integrations.twilio_client import build_twilio_client

if TYPE_CHECKING:  # pragma: no cover
    from calls.orchestrator import CallOrchestrator


@lru_cache(maxsize=1)
def _orchestrator_factory() -> CallOrchestrator:
    # Lazy import so route modules load without building service clients.
    from calls.orchestrator import CallOrchestrator

    return CallOrchestrator.from_settings(get_settings())


def get_orchestrator() -> CallOrchestrator:
    return _orchestrator_factory()


def get_twilio_client():
    return build_twilio_client()
