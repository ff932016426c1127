"""Data model shared by the request builder, API client and chat state."""

import io
from typing import Annotated, Any, Dict, Literal, Optional, Tuple, Union

from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel, ConfigDict, Field

Mode = Literal["generate", "edit", "variation"]
MODES: Tuple[str, ...] = ("generate", "edit", "variation")


class RequestOptions(BaseModel):
    """Option record for one mode. Fields unsupported by the model are simply not sent."""

    model_config = ConfigDict(frozen=True)

    model: str = Field(default="dall-e-2", description="Image model name")
    n: int = Field(default=1, ge=1, description="Number of images to request")
    size: str = Field(default="1024x1024", description="Output size, WIDTHxHEIGHT or auto")
    quality: str = Field(default="auto", description="Quality tier; valid values depend on the model")
    background: str = Field(default="auto", description="gpt-image-1 background mode")
    output_format: str = Field(default="png", description="gpt-image-1 output format")
    output_compression: int = Field(default=100, ge=0, le=100, description="0-100, jpeg/webp only")
    moderation: str = Field(default="auto", description="gpt-image-1 moderation level")
    response_format: str = Field(default="url", description="url or b64_json (dall-e models)")
    style: str = Field(default="vivid", description="dall-e-3 style")
    user: str = Field(default="", description="Optional end-user identifier")


OPTION_FIELDS: Tuple[str, ...] = tuple(RequestOptions.model_fields)


class UploadedAsset(BaseModel):
    """An uploaded file: raw bytes plus the declared MIME type."""

    model_config = ConfigDict(frozen=True)

    filename: str
    content_type: str
    data: bytes = Field(repr=False)

    @property
    def size(self) -> int:
        return len(self.data)

    def dimensions(self) -> Tuple[int, int]:
        """Return (width, height) of the image. Raises ValueError if unreadable."""
        try:
            with Image.open(io.BytesIO(self.data)) as img:
                return img.size
        except (UnidentifiedImageError, OSError) as e:
            raise ValueError(f"Cannot read image {self.filename}: {e}") from e

    def as_file(self) -> Tuple[str, bytes, str]:
        return (self.filename, self.data, self.content_type)

    @classmethod
    def from_upload(cls, uploaded: Any) -> Optional["UploadedAsset"]:
        """Build an asset from a Streamlit UploadedFile (or None)."""
        if uploaded is None:
            return None
        return cls(
            filename=uploaded.name,
            content_type=uploaded.type or "application/octet-stream",
            data=uploaded.getvalue()
        )


Endpoint = Literal["generate", "edit", "variation"]


class ImageRequest(BaseModel):
    """A fully validated outbound request: plain form/JSON fields plus file parts."""

    model_config = ConfigDict(frozen=True)

    endpoint: Endpoint
    params: Dict[str, Any]
    files: Dict[str, UploadedAsset] = Field(default_factory=dict)

    @property
    def prompt(self) -> Optional[str]:
        return self.params.get("prompt")

    def as_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {name: asset.as_file() for name, asset in self.files.items()}
        kwargs.update(self.params)
        return kwargs


class UserEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["user"] = "user"
    text: str


class ImageEntry(BaseModel):
    """One produced image set. A single image renders as a scalar entry, several as a grid."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["image"] = "image"
    prompt: str
    images: Tuple[str, ...]
    # request that produced the images, re-issued on regenerate
    request: Optional[ImageRequest] = None

    @property
    def is_grid(self) -> bool:
        return len(self.images) > 1

    @property
    def content(self) -> Union[str, Tuple[str, ...]]:
        return self.images if self.is_grid else self.images[0]


ChatEntry = Annotated[Union[UserEntry, ImageEntry], Field(discriminator="kind")]


class PendingRequest(BaseModel):
    """A request that passed validation and is waiting to be sent."""

    model_config = ConfigDict(frozen=True)

    request: ImageRequest
    label: str
    # chat index to replace (regenerate); None appends
    index: Optional[int] = None
