"""
UI state container
AppState holds everything the page shows; reduce() is the only way it changes.
Each action returns a new state, so transitions are easy to test in isolation.
"""

import logging
from typing import Any, Dict, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from capabilities import CAPABILITIES
from schemas import (
    MODES,
    ChatEntry,
    ImageEntry,
    Mode,
    OPTION_FIELDS,
    RequestOptions,
    UploadedAsset,
    UserEntry,
)

logger = logging.getLogger(__name__)


def default_options() -> Dict[str, RequestOptions]:
    return {mode: RequestOptions() for mode in MODES}


class AppState(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: Mode = "generate"
    options: Dict[str, RequestOptions] = Field(default_factory=default_options)
    prompt: str = ""
    image: Optional[UploadedAsset] = None
    mask: Optional[UploadedAsset] = None
    variation_image: Optional[UploadedAsset] = None
    chat: Tuple[ChatEntry, ...] = ()
    loading: bool = False
    form_error: str = ""
    error: str = ""
    # (chat index, image index within a grid) of the open preview
    expanded: Optional[Tuple[int, Optional[int]]] = None

    @property
    def current_options(self) -> RequestOptions:
        return self.options[self.mode]

    @property
    def upload(self) -> Optional[UploadedAsset]:
        """The upload the active mode submits."""
        return self.variation_image if self.mode == "variation" else self.image

    @property
    def image_count(self) -> int:
        return sum(len(entry.images) for entry in self.chat if isinstance(entry, ImageEntry))


# Actions

class _Action(BaseModel):
    model_config = ConfigDict(frozen=True)


class ModeChanged(_Action):
    mode: Mode


class FieldEdited(_Action):
    field: str
    value: Any


class PromptEdited(_Action):
    text: str


class UploadChanged(_Action):
    slot: Literal["image", "mask", "variation_image"]
    asset: Optional[UploadedAsset] = None


class SubmitStarted(_Action):
    # text echoed into the chat as the user's message; None for regenerate
    user_text: Optional[str] = None
    clear_prompt: bool = False


class ResponseArrived(_Action):
    entry: ImageEntry
    # replace this chat slot instead of appending
    index: Optional[int] = None


class RequestFailed(_Action):
    message: str


class ValidationFailed(_Action):
    message: str


class ExpandOpened(_Action):
    index: int
    image_index: Optional[int] = None


class ExpandClosed(_Action):
    pass


class ChatCleared(_Action):
    pass


Action = Union[
    ModeChanged, FieldEdited, PromptEdited, UploadChanged, SubmitStarted,
    ResponseArrived, RequestFailed, ValidationFailed, ExpandOpened,
    ExpandClosed, ChatCleared,
]


def append_entry(chat: Tuple[ChatEntry, ...], entry: ChatEntry) -> Tuple[ChatEntry, ...]:
    return chat + (entry,)


def replace_entry(chat: Tuple[ChatEntry, ...], index: int, entry: ChatEntry) -> Tuple[ChatEntry, ...]:
    """Swap the entry at `index`, keeping the chat length. Raises IndexError when out of range."""
    if not 0 <= index < len(chat):
        raise IndexError(f"No chat entry at index {index}")
    return chat[:index] + (entry,) + chat[index + 1:]


def _edit_option(state: AppState, field: str, value: Any) -> AppState:
    if field not in OPTION_FIELDS:
        raise ValueError(f"Unknown option field: {field}")

    update = {field: value}
    if field == "model":
        caps = CAPABILITIES.get(state.mode, {}).get(value)
        current = state.current_options
        # keep size/quality inside what the new model offers
        if caps is not None:
            if current.size not in caps.sizes:
                update["size"] = caps.default_size
            if caps.qualities and current.quality not in caps.qualities:
                update["quality"] = caps.qualities[0]
            if current.n > caps.max_n:
                update["n"] = caps.max_n

    try:
        edited = RequestOptions.model_validate({**state.current_options.model_dump(), **update})
    except ValidationError:
        logger.info(f"Rejected value for {field}: {value!r}")
        return state.model_copy(update={"form_error": f"Invalid value for {field}."})

    options = dict(state.options)
    options[state.mode] = edited
    return state.model_copy(update={"options": options, "form_error": ""})


def reduce(state: AppState, action: Action) -> AppState:
    """Apply one action and return the resulting state."""
    if isinstance(action, ModeChanged):
        # switching mode resets every field, upload and message
        return AppState(mode=action.mode, chat=state.chat, loading=state.loading)

    if isinstance(action, FieldEdited):
        return _edit_option(state, action.field, action.value)

    if isinstance(action, PromptEdited):
        return state.model_copy(update={"prompt": action.text})

    if isinstance(action, UploadChanged):
        return state.model_copy(update={action.slot: action.asset, "form_error": ""})

    if isinstance(action, SubmitStarted):
        if state.loading:
            logger.warning("Submit ignored: a request is already in flight")
            return state
        update: Dict[str, Any] = {"loading": True, "form_error": "", "error": ""}
        if action.user_text is not None:
            update["chat"] = append_entry(state.chat, UserEntry(text=action.user_text))
        if action.clear_prompt:
            update["prompt"] = ""
        return state.model_copy(update=update)

    if isinstance(action, ResponseArrived):
        if action.index is None:
            chat = append_entry(state.chat, action.entry)
        else:
            chat = replace_entry(state.chat, action.index, action.entry)
        return state.model_copy(update={"chat": chat, "loading": False})

    if isinstance(action, RequestFailed):
        return state.model_copy(update={"loading": False, "error": action.message})

    if isinstance(action, ValidationFailed):
        return state.model_copy(update={"form_error": action.message, "error": ""})

    if isinstance(action, ExpandOpened):
        return state.model_copy(update={"expanded": (action.index, action.image_index)})

    if isinstance(action, ExpandClosed):
        return state.model_copy(update={"expanded": None})

    if isinstance(action, ChatCleared):
        return state.model_copy(update={"chat": (), "expanded": None, "error": "", "form_error": ""})

    raise TypeError(f"Unknown action: {action!r}")
