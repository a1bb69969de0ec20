import os
import base64
import logging
from typing import Iterable, Optional

import requests

from .catalog import ModelDescriptor, find_model, get_catalog
from .errors import HttpError, NetworkFailure
from .handles import GeneratedImageHandle


logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api-inference.huggingface.co/models"

# 1x1 transparent PNG returned in dry-run mode
PLACEHOLDER_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)


class GenerationRequest:
    """One submission built fresh from the form fields."""

    def __init__(self, prompt: str, model_id: str, negative_prompt: Optional[str] = None):
        if not prompt or not prompt.strip():
            raise ValueError("prompt must not be empty")
        self.prompt = prompt
        self.model_id = model_id
        self.negative_prompt = negative_prompt or ""

    def __repr__(self):
        return f"GenerationRequest(model_id={self.model_id!r}, prompt={self.prompt!r})"


def build_payload(request: GenerationRequest, model: ModelDescriptor) -> dict:
    """Build the JSON body for the inference endpoint.

    The negative prompt is only forwarded when the model understands it.
    Models without that capability drop it silently.
    """
    payload = {"inputs": request.prompt}
    if request.negative_prompt and model.supports_negative_prompt:
        payload["parameters"] = {"negative_prompt": request.negative_prompt}
    return payload


def _timeout_from_env() -> Optional[float]:
    raw = os.getenv("INFERENCE_TIMEOUT")
    if not raw:
        return None
    return float(raw)


class ImageGenerator:
    """Client for the hosted text-to-image inference API.

    Behavior:
    - POST `{"inputs": prompt}` (plus an optional negative prompt) to
      `{INFERENCE_API_URL}/{model_id}` with the caller's bearer credential.
    - A 2xx response body is the image itself; it is wrapped in a
      `GeneratedImageHandle`.
    - Any other status raises `HttpError` with the response text. Transport
      errors raise `NetworkFailure`. Nothing is retried.
    - In `dry_run=True` mode no request is made and a placeholder PNG is
      returned, so the UI can be exercised without a key.
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        catalog: Optional[Iterable[ModelDescriptor]] = None,
        dry_run: bool = False,
        timeout: Optional[float] = None,
    ):
        self.api_url = (api_url or os.getenv("INFERENCE_API_URL") or DEFAULT_API_URL).rstrip("/")
        self.catalog = tuple(catalog) if catalog is not None else get_catalog(os.getenv("APP_VARIANT"))
        self.dry_run = dry_run
        # None leaves the transport default in place
        self.timeout = timeout if timeout is not None else _timeout_from_env()

    def endpoint_for(self, model_id: str) -> str:
        return f"{self.api_url}/{model_id}"

    def submit(self, request: GenerationRequest, credential: str) -> GeneratedImageHandle:
        """Generate one image and return a handle wrapping its bytes."""
        model = find_model(request.model_id, self.catalog)
        payload = build_payload(request, model)

        if self.dry_run:
            logger.info("[DRY RUN] Would POST to %s", self.endpoint_for(model.id))
            return GeneratedImageHandle(PLACEHOLDER_PNG, content_type="image/png")

        headers = {"Authorization": f"Bearer {credential}", "Content-Type": "application/json"}
        try:
            resp = requests.post(self.endpoint_for(model.id), json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning("Inference request to %s failed: %s", model.id, exc)
            raise NetworkFailure(exc) from exc

        if not resp.ok:
            body = resp.text
            logger.warning("Inference API returned %s for %s", resp.status_code, model.id)
            raise HttpError(resp.status_code, body)

        content_type = resp.headers.get("Content-Type") or "image/jpeg"
        handle = GeneratedImageHandle(resp.content, content_type=content_type)
        logger.info("Generated image %s with %s (%d bytes)", handle.handle_id, model.id, len(resp.content))
        return handle
