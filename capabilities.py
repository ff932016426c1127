"""
Per-model capability table
Each (mode, model) pair declares its sizes, quality tiers, upload limits and
the optional request fields it accepts, with a rule that maps the current
options to the value to send (or None to leave the field out).
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from config import MB
from schemas import RequestOptions

Rule = Callable[[RequestOptions], Optional[Any]]

DEFAULT_SIZE = "1024x1024"
SQUARE_SIZES = ("256x256", "512x512", "1024x1024")
GPT_IMAGE_SIZES = ("1024x1024", "1536x1024", "1024x1536", "auto")
DALLE3_SIZES = ("1024x1024", "1792x1024", "1024x1792")

MASK_TYPES = ("image/png",)
MASK_MAX_BYTES = 4 * MB


def choice(name: str, allowed: Sequence[str], skip: Sequence[str] = ()) -> Rule:
    """Send the option only when it is one of `allowed` and not in `skip`."""
    def rule(options: RequestOptions) -> Optional[Any]:
        value = getattr(options, name)
        if value in skip or value not in allowed:
            return None
        return value
    return rule


def fixed(value: Any) -> Rule:
    return lambda options: value


def count(options: RequestOptions) -> int:
    return options.n


def sized(sizes: Sequence[str]) -> Rule:
    """Send the requested size, or the model default when the size does not apply."""
    default = DEFAULT_SIZE if DEFAULT_SIZE in sizes else sizes[0]

    def rule(options: RequestOptions) -> str:
        return options.size if options.size in sizes else default
    return rule


def user_id(options: RequestOptions) -> Optional[str]:
    trimmed = (options.user or "").strip()
    return trimmed or None


def compression(options: RequestOptions) -> Optional[int]:
    # only lossy formats take a compression level; 100 is the API default
    if options.output_format in ("jpeg", "webp") and options.output_compression != 100:
        return int(options.output_compression)
    return None


@dataclass(frozen=True)
class ModelCapabilities:
    name: str
    sizes: Tuple[str, ...]
    qualities: Tuple[str, ...] = ()
    max_n: int = 1
    max_prompt_length: int = 1000
    image_types: Tuple[str, ...] = ()
    max_image_bytes: int = 0
    type_error: str = ""
    size_error: str = ""
    fields: Dict[str, Rule] = field(default_factory=dict)

    @property
    def default_size(self) -> str:
        return DEFAULT_SIZE if DEFAULT_SIZE in self.sizes else self.sizes[0]

    def supports(self, field_name: str) -> bool:
        return field_name in self.fields


CAPABILITIES: Dict[str, Dict[str, ModelCapabilities]] = {
    "generate": {
        "dall-e-2": ModelCapabilities(
            name="dall-e-2",
            sizes=SQUARE_SIZES,
            qualities=("auto", "standard"),
            max_n=10,
            max_prompt_length=1000,
            fields={
                "n": count,
                "size": sized(SQUARE_SIZES),
                "quality": choice("quality", ("standard",)),
                "response_format": choice("response_format", ("url", "b64_json")),
                "user": user_id,
            },
        ),
        "dall-e-3": ModelCapabilities(
            name="dall-e-3",
            sizes=DALLE3_SIZES,
            qualities=("auto", "hd", "standard"),
            max_n=1,
            max_prompt_length=4000,
            fields={
                "n": count,
                "size": sized(DALLE3_SIZES),
                "quality": choice("quality", ("hd", "standard"), skip=("auto",)),
                "response_format": choice("response_format", ("url", "b64_json")),
                "style": choice("style", ("vivid", "natural")),
                "user": user_id,
            },
        ),
        "gpt-image-1": ModelCapabilities(
            name="gpt-image-1",
            sizes=GPT_IMAGE_SIZES,
            qualities=("auto", "high", "medium", "low"),
            max_n=10,
            max_prompt_length=32000,
            fields={
                "n": count,
                "size": sized(GPT_IMAGE_SIZES),
                "quality": choice("quality", ("high", "medium", "low"), skip=("auto",)),
                "background": choice("background", ("auto", "transparent", "opaque")),
                "output_format": choice("output_format", ("png", "jpeg", "webp")),
                "output_compression": compression,
                "moderation": choice("moderation", ("auto", "low")),
                "user": user_id,
            },
        ),
    },
    "edit": {
        "dall-e-2": ModelCapabilities(
            name="dall-e-2",
            sizes=SQUARE_SIZES,
            max_prompt_length=1000,
            image_types=("image/png",),
            max_image_bytes=4 * MB,
            type_error="dall-e-2 requires a PNG image.",
            size_error="dall-e-2 image must be less than 4MB.",
            fields={
                "size": sized(SQUARE_SIZES),
                "response_format": fixed("url"),
            },
        ),
        "gpt-image-1": ModelCapabilities(
            name="gpt-image-1",
            sizes=GPT_IMAGE_SIZES,
            qualities=("auto", "high", "medium", "low"),
            max_prompt_length=32000,
            image_types=("image/png", "image/jpeg", "image/webp"),
            max_image_bytes=25 * MB,
            type_error="gpt-image-1 supports PNG, JPG, or WEBP images.",
            size_error="gpt-image-1 image must be less than 25MB.",
            fields={
                "size": sized(GPT_IMAGE_SIZES),
                "background": choice("background", ("auto", "transparent", "opaque")),
                "quality": choice("quality", ("auto", "high", "medium", "low")),
            },
        ),
    },
    "variation": {
        "dall-e-2": ModelCapabilities(
            name="dall-e-2",
            sizes=SQUARE_SIZES,
            max_n=10,
            image_types=("image/png",),
            max_image_bytes=4 * MB,
            type_error="Variation image must be a PNG file.",
            size_error="Variation image must be less than 4MB.",
            fields={
                "n": count,
                "size": sized(SQUARE_SIZES),
                "response_format": fixed("url"),
            },
        ),
    },
}


def models_for(mode: str) -> List[str]:
    return list(CAPABILITIES.get(mode, {}))


def get_capabilities(mode: str, model: str) -> ModelCapabilities:
    """Look up a model's capabilities. Raises KeyError for unknown pairs."""
    return CAPABILITIES[mode][model]


def collect_params(caps: ModelCapabilities, options: RequestOptions) -> Dict[str, Any]:
    """Apply every field rule of the model; fields whose rule yields None are left out."""
    params: Dict[str, Any] = {}
    for name, rule in caps.fields.items():
        value = rule(options)
        if value is not None:
            params[name] = value
    return params
