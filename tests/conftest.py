"""
Pytest Configuration and Fixtures

Shared fixtures for all tests: fake text and image providers, a tiny
generated PNG and ready-made profiles and scripts.
"""

import io
from typing import Any, Dict, List, Optional

import pytest
from PIL import Image

from relive.director import ScriptDirector
from relive.illustrator import PanelIllustrator
from relive.models import CharacterProfile, ReferenceImage
from relive.orchestrator import Orchestrator
from relive.resilience import RetryPolicy
from relive.storage import JsonStoryStore
from relive.utils import PromptLogger


def make_png(color: str = "red", size=(8, 8)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


def make_script(count: int = 6, names: Optional[List[str]] = None, **overrides) -> Dict[str, Any]:
    """A well-formed Director response with `count` panels."""
    names = names if names is not None else ["Mina"]
    panels = []
    for i in range(1, count + 1):
        panels.append({
            "panelId": i,
            "visualDescription": f"Mina walks through Busan harbor at dawn, beat {i}.",
            "panelOutfit": f"Outfit number {i}",
            "dialogue": f"Line {i}" if i % 2 else None,
            "speaker": names[0] if names and i % 2 else None,
            "narration": f"Narration {i}",
            "sceneCategory": "everyday",
        })
    data = {
        "title": "Harbor Mornings",
        "characterIdentityBlocks": [
            {"name": n, "cib": f"{n} is a woman in her late twenties with an oval face and dark brown eyes."}
            for n in names
        ],
        "panels": panels,
    }
    data.update(overrides)
    return data


class FakeTextClient:
    """Stands in for GAIC.generate_structured."""

    def __init__(self, response=None, errors: Optional[List[Exception]] = None):
        self.response = response if response is not None else make_script()
        self.errors = list(errors or [])
        self.calls = []

    def generate_structured(self, prompt, response_schema, images=None, model=None):
        self.calls.append({"prompt": prompt, "schema": response_schema, "images": images})
        if self.errors:
            raise self.errors.pop(0)
        return self.response


class FakeImageClient:
    """Stands in for GAIC.generate_image / FalImageClient.generate_image."""

    def __init__(self, image: bytes = None, errors: Optional[List[Optional[Exception]]] = None):
        self.image = image or make_png()
        # one entry per call: an exception to raise, or None to succeed
        self.errors = list(errors or [])
        self.calls = []

    def generate_image(self, prompt, reference=None, seed=None, model=None):
        self.calls.append({"prompt": prompt, "reference": reference, "seed": seed})
        if self.errors:
            err = self.errors.pop(0)
            if err is not None:
                raise err
        return self.image


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def reference(png_bytes) -> ReferenceImage:
    return ReferenceImage.from_bytes(png_bytes, "image/png")


@pytest.fixture
def profile(reference) -> CharacterProfile:
    return CharacterProfile(name="Mina", referenceImage=reference, hairOverride="short black bob")


@pytest.fixture
def quiet_log() -> PromptLogger:
    return PromptLogger(echo=False)


@pytest.fixture
def no_wait_retry() -> RetryPolicy:
    return RetryPolicy(retries=3, base_delay=1, sleep=lambda s: None)


@pytest.fixture
def text_client() -> FakeTextClient:
    return FakeTextClient()


@pytest.fixture
def image_client() -> FakeImageClient:
    return FakeImageClient()


@pytest.fixture
def store(tmp_path) -> JsonStoryStore:
    return JsonStoryStore(tmp_path / "memories")


@pytest.fixture
def orchestrator(text_client, image_client, store, quiet_log, no_wait_retry) -> Orchestrator:
    director = ScriptDirector(text_client, retry=no_wait_retry, log=quiet_log)
    illustrator = PanelIllustrator(image_client, retry=no_wait_retry, log=quiet_log)
    return Orchestrator(director, illustrator, store=store, pacing_seconds=0,
                        sleep=lambda s: None)
