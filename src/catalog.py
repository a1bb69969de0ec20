"""Static model catalogs for the two app variants.

`byok` is the bring-your-own-key build: the user types an API key and can
choose between the classic Stable Diffusion checkpoints and FLUX.1-dev.
`hosted` runs on a deployment key, so it is rate limited and includes a
model flagged NSFW that needs an explicit confirmation before use.
"""
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from .errors import UnknownModel


@dataclass(frozen=True)
class ModelDescriptor:
    id: str
    display_name: str
    supports_negative_prompt: bool = False
    nsfw: bool = False


BYOK_MODELS: Tuple[ModelDescriptor, ...] = (
    ModelDescriptor("stabilityai/stable-diffusion-2", "Stable Diffusion 2", supports_negative_prompt=True),
    ModelDescriptor("runwayml/stable-diffusion-v1-5", "Stable Diffusion 1.5", supports_negative_prompt=True),
    ModelDescriptor("CompVis/stable-diffusion-v1-4", "Stable Diffusion 1.4", supports_negative_prompt=True),
    ModelDescriptor("black-forest-labs/FLUX.1-dev", "FLUX.1"),
)

HOSTED_MODELS: Tuple[ModelDescriptor, ...] = (
    ModelDescriptor("black-forest-labs/FLUX.1-schnell", "FLUX.1 Schnell"),
    ModelDescriptor("black-forest-labs/FLUX.1-dev", "FLUX.1 Dev"),
    ModelDescriptor(
        "stabilityai/stable-diffusion-xl-base-1.0", "Stable Diffusion XL", supports_negative_prompt=True
    ),
    ModelDescriptor("UnfilteredAI/NSFW-gen-v2", "NSFW Gen v2", supports_negative_prompt=True, nsfw=True),
)

CATALOGS = {
    "byok": BYOK_MODELS,
    "hosted": HOSTED_MODELS,
}

DEFAULT_VARIANT = "byok"


def get_catalog(variant: Optional[str] = None) -> Tuple[ModelDescriptor, ...]:
    name = (variant or DEFAULT_VARIANT).lower()
    try:
        return CATALOGS[name]
    except KeyError:
        raise ValueError(f"Unknown app variant: {variant} (expected one of {', '.join(CATALOGS)})")


def find_model(model_id: str, catalog: Iterable[ModelDescriptor]) -> ModelDescriptor:
    for model in catalog:
        if model.id == model_id:
            return model
    raise UnknownModel(model_id)
