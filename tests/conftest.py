from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

PUBLIC_BASE_URL = "https://bridge.example.com"

_CONFIG_ENV = (
    "PUBLIC_WS_URL",
    "TWILIO_ACCOUNT_SID",
    "TWILIO_AUTH_TOKEN",
    "TWILIO_NUMBER",
    "WAKE_PHRASE",
    "WAKE_PHRASES",
    "ELEVEN_API_KEY",
    "ELEVEN_WS_URL",
    "ELEVEN_VOICE_ID",
    "ELEVEN_AGENT_ID",
)


@pytest.fixture(scope="session")
def app():
    # Must be set before importing modules that read settings.
    for name in _CONFIG_ENV:
        os.environ.pop(name, None)
    os.environ["PUBLIC_BASE_URL"] = PUBLIC_BASE_URL

    import importlib

    for module_name in [
        "config.settings",
        "api.dependencies",
        "api.twilio_routes",
        "api.routes",
        "main",
    ]:
        sys.modules.pop(module_name, None)

    main = importlib.import_module("main")
    return main.app


@pytest.fixture()
def fake_twilio():
    from fakes import FakeTwilioClient

    return FakeTwilioClient()


@pytest.fixture()
def orchestrator(fake_twilio):
    from calls.orchestrator import CallOrchestrator
    from calls.registry import SessionRegistry
    from fakes import FakeSynthesizer
    from playback.announcer import PlaybackAnnouncer
    from playback.store import AudioBlobStore

    registry = SessionRegistry()
    store = AudioBlobStore()
    announcer = PlaybackAnnouncer(
        registry=registry,
        store=store,
        synthesizer=FakeSynthesizer(),
        twilio_client=fake_twilio,
        public_base_url=PUBLIC_BASE_URL,
    )
    return CallOrchestrator(registry=registry, store=store, announcer=announcer)


@pytest.fixture()
def client(app, orchestrator, fake_twilio):
    # Override service dependencies so tests never reach Twilio or ElevenLabs.
    import api.dependencies as deps

    app.dependency_overrides[deps.get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[deps.get_twilio_client] = lambda: fake_twilio

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
