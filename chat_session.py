"""
Submission flow
Idle -> Submitting -> (image entry appended/replaced | error shown) -> Idle.
Only one request may be in flight; a second submit while loading is refused.
"""

import logging
from typing import Callable, Optional

from chat_state import (
    Action,
    AppState,
    RequestFailed,
    ResponseArrived,
    SubmitStarted,
    ValidationFailed,
    reduce,
)
from image_client import ImageAPIClient, ImageAPIError
from request_builder import FormError, build_request
from schemas import ImageEntry, PendingRequest

logger = logging.getLogger(__name__)

VARIATION_MESSAGE = "Create variation"
VARIATION_LABEL = "Variation"


class ChatSession:
    """Drives one AppState through submissions against an ImageAPIClient."""

    def __init__(self, client: Optional[ImageAPIClient] = None, state: Optional[AppState] = None):
        self.client = client
        self.state = state or AppState()

    def dispatch(self, action: Action) -> AppState:
        self.state = reduce(self.state, action)
        return self.state

    def prepare(self) -> Optional[PendingRequest]:
        """Validate the form and enter Submitting. Returns None when nothing is sent."""
        state = self.state
        if state.loading:
            logger.warning("Submit ignored: a request is already in flight")
            return None

        try:
            request = build_request(
                state.mode,
                state.current_options,
                state.prompt,
                image=state.upload,
                mask=state.mask if state.mode == "edit" else None
            )
        except FormError as e:
            logger.info(f"Form rejected: {e.message}")
            self.dispatch(ValidationFailed(message=e.message))
            return None

        if state.mode == "variation":
            self.dispatch(SubmitStarted(user_text=VARIATION_MESSAGE))
            return PendingRequest(request=request, label=VARIATION_LABEL)

        self.dispatch(SubmitStarted(user_text=state.prompt, clear_prompt=True))
        return PendingRequest(request=request, label=state.prompt)

    def prepare_regenerate(self, index: int) -> Optional[PendingRequest]:
        """Re-issue the request behind chat entry `index`; the result replaces it in place."""
        if self.state.loading:
            logger.warning("Regenerate ignored: a request is already in flight")
            return None

        entry = self.state.chat[index]
        if not isinstance(entry, ImageEntry) or entry.request is None:
            raise ValueError(f"Chat entry {index} cannot be regenerated")

        self.dispatch(SubmitStarted())
        return PendingRequest(request=entry.request, label=entry.prompt, index=index)

    async def complete(self, pending: PendingRequest) -> AppState:
        """Send a prepared request and fold the outcome back into the state."""
        if self.client is None:
            raise RuntimeError("ChatSession has no API client")
        try:
            images = await self.client.execute(pending.request)
        except ImageAPIError as e:
            return self.dispatch(RequestFailed(message=e.message))
        except Exception as e:
            logger.exception(f"Unexpected error during {pending.request.endpoint}")
            return self.dispatch(RequestFailed(message=str(e) or "Error generating image."))

        entry = ImageEntry(prompt=pending.label, images=tuple(images), request=pending.request)
        return self.dispatch(ResponseArrived(entry=entry, index=pending.index))

    async def submit(self) -> AppState:
        pending = self.prepare()
        if pending is None:
            return self.state
        return await self.complete(pending)

    async def regenerate(self, index: int) -> AppState:
        pending = self.prepare_regenerate(index)
        if pending is None:
            return self.state
        return await self.complete(pending)

    async def send(self, pending: PendingRequest, client_factory: Callable[[], ImageAPIClient]) -> AppState:
        """Open a client, complete `pending` and close the client again.

        A client that cannot be built or closed still ends the request, so the
        state never stays in Submitting.
        """
        try:
            async with client_factory() as client:
                self.client = client
                await self.complete(pending)
        except Exception as e:
            logger.exception(f"Could not send {pending.request.endpoint} request")
            if self.state.loading:
                self.dispatch(RequestFailed(message=str(e) or "Error generating image."))
        return self.state
