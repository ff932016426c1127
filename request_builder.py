"""
Request builder
Turns (mode, options, prompt, uploads) into a validated ImageRequest.
Nothing here touches the network: a FormError means no request is made.
"""

import logging
from typing import Optional

from capabilities import (
    MASK_MAX_BYTES,
    MASK_TYPES,
    ModelCapabilities,
    collect_params,
    get_capabilities,
)
from schemas import ImageRequest, RequestOptions, UploadedAsset

logger = logging.getLogger(__name__)


class FormError(ValueError):
    """Local validation failure, shown inline next to the form."""

    @property
    def message(self) -> str:
        return str(self)


def _capabilities(mode: str, model: str) -> ModelCapabilities:
    try:
        return get_capabilities(mode, model)
    except KeyError:
        raise FormError(f"Unsupported model: {model}") from None


def _require_prompt(prompt: Optional[str], caps: ModelCapabilities) -> str:
    if not prompt or not prompt.strip():
        raise FormError("Please enter a prompt.")
    if len(prompt) > caps.max_prompt_length:
        raise FormError(f"Prompt must be at most {caps.max_prompt_length} characters for {caps.name}.")
    return prompt


def _check_asset(asset: UploadedAsset, types, max_bytes: int, type_error: str, size_error: str) -> None:
    if asset.content_type not in types:
        raise FormError(type_error)
    if asset.size > max_bytes:
        raise FormError(size_error)


def _dimensions(asset: UploadedAsset):
    try:
        return asset.dimensions()
    except ValueError as e:
        logger.warning(f"Unreadable upload: {e}")
        raise FormError("Could not read the uploaded image.") from e


def build_generate_request(options: RequestOptions, prompt: str) -> ImageRequest:
    caps = _capabilities("generate", options.model)
    prompt = _require_prompt(prompt, caps)
    if not 1 <= options.n <= caps.max_n:
        raise FormError(f"Number of images must be between 1 and {caps.max_n}.")

    params = {"prompt": prompt, "model": caps.name}
    params.update(collect_params(caps, options))
    return ImageRequest(endpoint="generate", params=params)


def build_edit_request(options: RequestOptions, prompt: str,
                       image: Optional[UploadedAsset],
                       mask: Optional[UploadedAsset] = None) -> ImageRequest:
    caps = _capabilities("edit", options.model)
    prompt = _require_prompt(prompt, caps)
    if image is None:
        raise FormError("Please upload an image to edit.")

    _check_asset(image, caps.image_types, caps.max_image_bytes, caps.type_error, caps.size_error)
    files = {"image": image}
    if mask is not None:
        _check_asset(mask, MASK_TYPES, MASK_MAX_BYTES,
                     "Mask must be a PNG file.", "Mask must be less than 4MB.")
        if _dimensions(mask) != _dimensions(image):
            raise FormError("Mask must have the same dimensions as the image.")
        files["mask"] = mask

    params = {"prompt": prompt, "model": caps.name}
    params.update(collect_params(caps, options))
    return ImageRequest(endpoint="edit", params=params, files=files)


def build_variation_request(options: RequestOptions,
                            image: Optional[UploadedAsset]) -> ImageRequest:
    caps = _capabilities("variation", options.model)
    if image is None:
        raise FormError("Please upload a PNG image for variation.")

    _check_asset(image, caps.image_types, caps.max_image_bytes, caps.type_error, caps.size_error)
    if not 1 <= options.n <= caps.max_n:
        raise FormError(f"Number of variations must be between 1 and {caps.max_n}.")
    width, height = _dimensions(image)
    if width != height:
        raise FormError("Variation image must be square (width = height).")

    params = {"model": caps.name}
    params.update(collect_params(caps, options))
    return ImageRequest(endpoint="variation", params=params, files={"image": image})


def build_request(mode: str, options: RequestOptions, prompt: str = "",
                  image: Optional[UploadedAsset] = None,
                  mask: Optional[UploadedAsset] = None) -> ImageRequest:
    """Validate the form for `mode` and build the request to send."""
    if mode == "generate":
        request = build_generate_request(options, prompt)
    elif mode == "edit":
        request = build_edit_request(options, prompt, image, mask)
    elif mode == "variation":
        request = build_variation_request(options, image)
    else:
        raise FormError(f"Unknown mode: {mode}")

    logger.debug(f"Built {mode} request with fields {sorted(request.params)}")
    return request
