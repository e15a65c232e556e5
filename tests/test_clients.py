"""
Tests for the provider wrappers, with the SDKs mocked out.
"""

import base64
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from relive import clients, config
from relive.clients import FalImageClient, GAIC, extract_inline_image, make_image_client
from relive.errors import PanelGenerationError, RateLimitError


def image_response(data):
    part = SimpleNamespace(inline_data=SimpleNamespace(data=data))
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]))])


class TestExtractInlineImage:
    """Tests for extract_inline_image."""

    def test_bytes(self):
        assert extract_inline_image(image_response(b"img")) == b"img"

    def test_base64_text(self):
        assert extract_inline_image(image_response(base64.b64encode(b"img").decode())) == b"img"

    def test_text_only_response(self):
        part = SimpleNamespace(inline_data=None, text="I cannot draw that")
        resp = SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]))])
        assert extract_inline_image(resp) is None


class TestGAIC:
    """Tests for the google-genai wrapper."""

    def test_missing_key(self, monkeypatch):
        monkeypatch.setattr(config, "GEMINI_API_KEY", "")
        with pytest.raises(RuntimeError):
            GAIC()

    @patch("relive.clients.genai.Client")
    def test_generate_image_sends_seed_and_reference(self, mock_client_cls):
        mock_models = mock_client_cls.return_value.models
        mock_models.generate_content.return_value = image_response(b"png-bytes")
        g = GAIC(api_key="test-key")

        image = g.generate_image("Draw panel", reference=(b"photo", "image/jpeg"), seed=42)

        assert image == b"png-bytes"
        kwargs = mock_models.generate_content.call_args.kwargs
        assert kwargs["model"] == config.IMAGE_MODEL
        assert kwargs["contents"][0] == "Draw panel"
        assert len(kwargs["contents"]) == 2
        assert kwargs["config"].seed == 42
        assert kwargs["config"].response_modalities == ["IMAGE"]

    @patch("relive.clients.genai.Client")
    def test_aspect_ratio_from_config(self, mock_client_cls, monkeypatch):
        monkeypatch.setattr(config, "PANEL_ASPECT_RATIO", "9:16")
        mock_models = mock_client_cls.return_value.models
        mock_models.generate_content.return_value = image_response(b"png-bytes")

        GAIC(api_key="test-key").generate_image("Draw panel")

        kwargs = mock_models.generate_content.call_args.kwargs
        assert kwargs["config"].image_config.aspect_ratio == "9:16"

    @patch("relive.clients.genai.Client")
    def test_generate_image_without_image(self, mock_client_cls):
        part = SimpleNamespace(inline_data=None)
        mock_client_cls.return_value.models.generate_content.return_value = SimpleNamespace(
            candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]))])
        with pytest.raises(PanelGenerationError):
            GAIC(api_key="test-key").generate_image("Draw panel")

    @patch("relive.clients.genai.Client")
    def test_generate_structured_prefers_parsed(self, mock_client_cls):
        mock_models = mock_client_cls.return_value.models
        mock_models.generate_content.return_value = SimpleNamespace(parsed={"title": "x"}, text="{}")
        result = GAIC(api_key="test-key").generate_structured("Plan", dict, images=[(b"a", "image/png")])
        assert result == {"title": "x"}
        kwargs = mock_models.generate_content.call_args.kwargs
        assert kwargs["config"]["response_mime_type"] == "application/json"
        assert kwargs["model"] == config.PLANNING_MODEL

    @patch("relive.clients.genai.Client")
    def test_generate_structured_falls_back_to_text(self, mock_client_cls):
        mock_client_cls.return_value.models.generate_content.return_value = SimpleNamespace(
            parsed=None, text='{"title": "x"}')
        assert GAIC(api_key="test-key").generate_structured("Plan", dict) == '{"title": "x"}'


class TestFalImageClient:
    """Tests for the Fal nano-banana wrapper."""

    @pytest.fixture
    def fal(self, monkeypatch):
        monkeypatch.setenv("FAL_KEY", "placeholder")
        subscribe = MagicMock(return_value={"images": [{"url": "https://fal.example/img.png"}]})
        download = MagicMock(return_value=SimpleNamespace(status_code=200, content=b"png"))
        monkeypatch.setattr(clients.fal_client, "subscribe", subscribe)
        monkeypatch.setattr(clients.requests, "get", download)
        return SimpleNamespace(client=FalImageClient(api_key="fal-key"), subscribe=subscribe,
                               download=download)

    def test_text_only(self, fal):
        assert fal.client.generate_image("Draw panel", seed=5) == b"png"
        endpoint = fal.subscribe.call_args.args[0]
        arguments = fal.subscribe.call_args.kwargs["arguments"]
        assert endpoint == config.FAL_IMAGE_ENDPOINT
        assert "seed" not in arguments

    def test_reference_uses_edit(self, fal):
        fal.client.generate_image("Draw panel", reference=(b"photo", "image/jpeg"))
        endpoint = fal.subscribe.call_args.args[0]
        arguments = fal.subscribe.call_args.kwargs["arguments"]
        assert endpoint.endswith("/edit")
        assert arguments["image_urls"][0].startswith("data:image/jpeg;base64,")

    def test_no_images(self, fal):
        fal.subscribe.return_value = {"images": []}
        with pytest.raises(PanelGenerationError):
            fal.client.generate_image("Draw panel")

    def test_download_rate_limited(self, fal):
        fal.download.return_value = SimpleNamespace(status_code=429, content=b"")
        with pytest.raises(RateLimitError):
            fal.client.generate_image("Draw panel")


class TestMakeImageClient:
    """Tests for make_image_client."""

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            make_image_client("midjourney")

    def test_fal_backend(self, monkeypatch):
        monkeypatch.setenv("FAL_KEY", "placeholder")
        monkeypatch.setattr(config, "FAL_API_KEY", "fal-key")
        assert isinstance(make_image_client("fal"), FalImageClient)
