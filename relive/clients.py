# clients.py
import base64
import os
from typing import List, Optional, Tuple

# Google AI SDK (script planning + multimodal panels)
from google import genai
from google.genai import types

# Fal AI SDK for the split text/image backend
import fal_client
import requests

from . import config
from .errors import PanelGenerationError, RateLimitError, ServiceUnavailableError

# (raw bytes, mime type)
ImageInput = Tuple[bytes, str]


def extract_inline_image(resp) -> Optional[bytes]:
    """First inline image payload of a generate_content response, if any."""
    for c in getattr(resp, "candidates", None) or []:
        content = getattr(c, "content", None)
        for p in getattr(content, "parts", None) or []:
            blob = getattr(p, "inline_data", None)
            if blob is not None and getattr(blob, "data", None):
                data = blob.data
                # some transports hand back base64 text instead of bytes
                return base64.b64decode(data) if isinstance(data, str) else data
    return None

# ------------------ GENAI WRAPPER ----------------


class GAIC:
    def __init__(self, api_key: str = None):
        api_key = api_key or config.GEMINI_API_KEY
        if not api_key:
            raise RuntimeError("Missing GEMINI_API_KEY in .env")
        self.client = genai.Client(api_key=api_key)

    # Structured output generation
    def generate_structured(self, prompt: str, response_schema, images: Optional[List[ImageInput]] = None,
                            model: str = None):
        """
        Ask for JSON matching response_schema.
        Returns the parsed pydantic object when the SDK could parse it,
        otherwise the raw response text for the caller to parse.
        """
        contents: list = [prompt]
        for data, mime in images or []:
            contents.append(types.Part.from_bytes(data=data, mime_type=mime))
        resp = self.client.models.generate_content(
            model=model or config.PLANNING_MODEL,
            contents=contents,
            config={
                "response_mime_type": "application/json",
                "response_schema": response_schema,
            }
        )
        parsed = getattr(resp, "parsed", None)
        if parsed is not None:
            return parsed
        return getattr(resp, "text", "") or ""

    def generate_image(self, prompt: str, reference: Optional[ImageInput] = None,
                       seed: Optional[int] = None, model: str = None) -> bytes:
        """
        One panel image. The reference photo, when given, rides along as an
        inline part right after the prompt.
        """
        contents: list = [prompt]
        if reference:
            data, mime = reference
            contents.append(types.Part.from_bytes(data=data, mime_type=mime))
        resp = self.client.models.generate_content(
            model=model or config.IMAGE_MODEL,
            contents=contents,
            config=types.GenerateContentConfig(
                response_modalities=["IMAGE"],
                seed=seed,
                image_config=types.ImageConfig(
                    aspect_ratio=config.PANEL_ASPECT_RATIO),
            ),
        )
        image = extract_inline_image(resp)
        if not image:
            raise PanelGenerationError("No image generated in response")
        return image


class FalImageClient:
    """
    Nano banana on Fal. Text-to-image without a reference photo, the edit
    endpoint with one. The endpoint takes no seed, so seeds are dropped.
    """

    def __init__(self, api_key: str = None, endpoint: str = None):
        api_key = api_key or config.FAL_API_KEY
        if not api_key:
            raise RuntimeError("Missing FAL_API_KEY in .env")
        os.environ["FAL_KEY"] = api_key
        self.endpoint = endpoint or config.FAL_IMAGE_ENDPOINT

    def generate_image(self, prompt: str, reference: Optional[ImageInput] = None,
                       seed: Optional[int] = None) -> bytes:
        if reference:
            data, mime = reference
            data_uri = f"data:{mime};base64,{base64.b64encode(data).decode('utf-8')}"
            result = fal_client.subscribe(
                f"{self.endpoint}/edit",
                arguments={
                    "prompt": prompt,
                    "image_urls": [data_uri],
                    "num_images": 1,
                    "output_format": "png"
                },
                with_logs=True,
            )
        else:
            result = fal_client.subscribe(
                self.endpoint,
                arguments={
                    "prompt": prompt,
                    "num_images": 1,
                    "output_format": "png"
                },
                with_logs=True,
            )

        images = (result or {}).get("images") or []
        if not images:
            raise PanelGenerationError("Fal API returned no images")

        response = requests.get(images[0]["url"], timeout=60)
        if response.status_code == 429:
            raise RateLimitError("Fal image download rate limited")
        if response.status_code == 503:
            raise ServiceUnavailableError("Fal image download unavailable")
        if response.status_code != 200:
            raise PanelGenerationError(
                f"Failed to download image from Fal: {response.status_code}")
        return response.content


def make_text_client() -> GAIC:
    return GAIC()


def make_image_client(backend: str = None):
    backend = (backend or config.IMAGE_BACKEND).lower()
    if backend == "gemini":
        return GAIC()
    if backend == "fal":
        return FalImageClient()
    raise ValueError(f"Unknown IMAGE_BACKEND '{backend}' (expected gemini or fal)")
