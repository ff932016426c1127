"""
Image API client
Sends ImageRequests to the generations, edits and variations endpoints and
normalizes the responses into displayable image sources.
"""

import base64
import logging
from typing import Any, List, Optional, Union

import httpx
import openai
from openai import AsyncOpenAI

import config
from schemas import ImageRequest

logger = logging.getLogger(__name__)

GENERIC_ERRORS = {
    "generate": "Failed to generate image",
    "edit": "Failed to edit image",
    "variation": "Failed to create variation",
}

EMPTY_ERRORS = {
    "generate": "No image returned.",
    "edit": "No image returned.",
    "variation": "No variation images returned.",
}


class ImageAPIError(Exception):
    """Transport or HTTP failure, carrying the message to show the user."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class EmptyResultError(ImageAPIError):
    """The API answered successfully but returned no images."""


def _field(item: Any, name: str) -> Any:
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)


def to_data_uri(b64_json: str, output_format: str = "png") -> str:
    return f"data:image/{output_format};base64,{b64_json}"


def normalize_images(data: Any, output_format: Optional[str] = None) -> List[str]:
    """Convert a response `data` array into URLs or data URIs, skipping empty items."""
    sources: List[str] = []
    for item in data or []:
        url = _field(item, "url")
        b64_json = _field(item, "b64_json")
        if url:
            sources.append(url)
        elif b64_json:
            sources.append(to_data_uri(b64_json, output_format or "png"))
    return sources


def image_payload(source: str) -> Union[str, bytes]:
    """Bytes for a data URI, the URL itself otherwise (for display and download)."""
    if source.startswith("data:"):
        _, _, encoded = source.partition(",")
        return base64.b64decode(encoded)
    return source


def error_message(error: openai.APIStatusError, fallback: str) -> str:
    """Pull `error.message` out of an error body, or fall back to a generic text."""
    body = getattr(error, "body", None)
    if isinstance(body, dict):
        message = body.get("message")
        if not message and isinstance(body.get("error"), dict):
            message = body["error"].get("message")
        if message:
            return str(message)
    return fallback


class ImageAPIClient:
    """Thin async wrapper around the images endpoints.

    Retries are disabled and every call is bounded by an explicit timeout, so
    a hung request surfaces as an error instead of leaving the UI waiting.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self.client = AsyncOpenAI(
            api_key=config.get_api_key(api_key),
            base_url=base_url or config.OPENAI_BASE_URL,
            timeout=timeout or config.REQUEST_TIMEOUT,
            max_retries=0,
            http_client=http_client
        )

    async def __aenter__(self) -> "ImageAPIClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self.client.close()

    async def generate(self, request: ImageRequest) -> List[str]:
        return await self._call("generate", self.client.images.generate, request)

    async def edit(self, request: ImageRequest) -> List[str]:
        return await self._call("edit", self.client.images.edit, request)

    async def create_variation(self, request: ImageRequest) -> List[str]:
        return await self._call("variation", self.client.images.create_variation, request)

    async def execute(self, request: ImageRequest) -> List[str]:
        """Send a request to the endpoint it was built for."""
        if request.endpoint == "generate":
            return await self.generate(request)
        if request.endpoint == "edit":
            return await self.edit(request)
        return await self.create_variation(request)

    async def _call(self, endpoint: str, method, request: ImageRequest) -> List[str]:
        fallback = GENERIC_ERRORS[endpoint]
        try:
            logger.debug(f"Calling images {endpoint} with model: {request.params.get('model')}")
            response = await method(**request.as_kwargs())
        except openai.APIStatusError as e:
            message = error_message(e, fallback)
            logger.error(f"Images {endpoint} failed with status {e.status_code}: {message}")
            raise ImageAPIError(message, status_code=e.status_code) from e
        except openai.APITimeoutError as e:
            logger.error(f"Images {endpoint} timed out")
            raise ImageAPIError("Request timed out.") from e
        except openai.APIConnectionError as e:
            logger.error(f"Images {endpoint} connection error: {str(e)}")
            raise ImageAPIError(fallback) from e

        images = normalize_images(
            getattr(response, "data", None),
            getattr(response, "output_format", None)
        )
        if not images:
            logger.warning(f"Images {endpoint} returned no images")
            raise EmptyResultError(EMPTY_ERRORS[endpoint])

        logger.info(f"Images {endpoint} returned {len(images)} image(s)")
        return images
