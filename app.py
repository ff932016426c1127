import streamlit as st
import asyncio
import io
import logging
from typing import List, Optional, Tuple
from PIL import Image
from streamlit_drawable_canvas import st_canvas

import config
from capabilities import get_capabilities, models_for
from chat_session import ChatSession
from chat_state import (
    AppState,
    ChatCleared,
    ExpandClosed,
    ExpandOpened,
    FieldEdited,
    ModeChanged,
    PromptEdited,
    UploadChanged,
    reduce,
)
from image_client import ImageAPIClient, image_payload
from mask_editor import BRUSH, BRUSH_STROKE, ERASER, ERASER_STROKE, MaskEditor
from schemas import MODES, ImageEntry, UploadedAsset

config.configure_logging()
logger = logging.getLogger(__name__)

# Configure Streamlit page
st.set_page_config(
    page_title="EditAI",
    page_icon="🎨",
    layout="wide",
    initial_sidebar_state="expanded"
)

st.markdown("""
<style>
.subtitle { color: #c084fc; font-size: 1.1rem; }
.topic-title { color: #7e22ce; font-weight: 600; }
.stButton > button {
    width: 100%;
}
</style>
""", unsafe_allow_html=True)

TOPICS = [
    ("Generate Image", "A futuristic city skyline at sunset with flying cars and neon lights"),
    ("Edit Image", "Remove the red car from the street and replace it with a bicycle"),
    ("Apply Filters", "Apply a vintage sepia filter to a portrait of a woman in a garden"),
    ("Remove Background", "Isolate the person in the image and remove the background completely"),
    ("Image Upscale", "Upscale a low-resolution image of a mountain landscape to 4K"),
    ("Style Transfer", "Recreate a photo of a cat in the style of Van Gogh's Starry Night"),
]

MODE_LABELS = {"generate": "Generate", "edit": "Edit", "variation": "Variation"}
SUBMIT_LABELS = {"generate": "Generate Image", "edit": "Edit Image", "variation": "Create Variation"}
UPLOAD_TYPES = {"image": ["png", "jpg", "jpeg", "webp"], "mask": ["png"], "variation_image": ["png"]}
CANVAS_MAX_WIDTH = 512


@st.dialog("Image", width="large")
def expanded_view(source: str):
    st.image(image_payload(source), use_container_width=True)


class EditAIChat:
    """Main class for the EditAI chat application"""

    def __init__(self):
        self.initialize_session_state()

    def initialize_session_state(self):
        """Initialize all session state variables"""
        defaults = {
            "app_state": AppState(),
            "api_key": config.OPENAI_API_KEY,
            "pending": None,
            "form_seed": 0,
            "prompt_seed": 0,
            "canvas_seed": 0,
            "mask_tool": BRUSH,
        }

        for key, default_value in defaults.items():
            if key not in st.session_state:
                st.session_state[key] = default_value

    @property
    def state(self) -> AppState:
        return st.session_state.app_state

    def dispatch(self, action) -> AppState:
        st.session_state.app_state = reduce(self.state, action)
        return st.session_state.app_state

    # Widget callbacks

    def _on_mode(self):
        self.dispatch(ModeChanged(mode=st.session_state.mode_picker))
        st.session_state.form_seed += 1
        st.session_state.prompt_seed += 1
        st.session_state.canvas_seed += 1

    def _on_field(self, field: str, key: str):
        self.dispatch(FieldEdited(field=field, value=st.session_state[key]))

    def _on_prompt(self, key: str):
        self.dispatch(PromptEdited(text=st.session_state[key]))

    def _on_upload(self, slot: str, key: str):
        asset = UploadedAsset.from_upload(st.session_state[key])
        self.dispatch(UploadChanged(slot=slot, asset=asset))
        if slot == "image":
            st.session_state.canvas_seed += 1

    def _pick_topic(self, text: str):
        self.dispatch(PromptEdited(text=text))
        st.session_state.prompt_seed += 1

    def _widget_key(self, name: str) -> str:
        return f"{self.state.mode}_{name}_{st.session_state.form_seed}"

    # Submission

    def start_submit(self, regenerate_index: Optional[int] = None):
        """Validate and enter Submitting; the request is sent on the next run."""
        session = ChatSession(state=self.state)
        if regenerate_index is None:
            pending = session.prepare()
        else:
            pending = session.prepare_regenerate(regenerate_index)
        st.session_state.app_state = session.state
        if pending is not None:
            st.session_state.pending = pending
            if regenerate_index is None and self.state.mode != "variation":
                st.session_state.prompt_seed += 1
        st.rerun()

    async def _send(self, pending) -> AppState:
        session = ChatSession(state=self.state)
        return await session.send(pending, lambda: ImageAPIClient(api_key=st.session_state.api_key))

    def run_pending(self):
        pending = st.session_state.pending
        st.session_state.pending = None
        label = "Editing image..." if pending.request.endpoint == "edit" else "Generating image..."
        logger.info(f"Sending {pending.request.endpoint} request")
        with st.spinner(label):
            st.session_state.app_state = asyncio.run(self._send(pending))
        st.rerun()

    # Rendering

    def render_entry(self, idx: int, entry):
        if entry.kind == "user":
            with st.chat_message("user"):
                st.write(entry.text)
            return

        with st.chat_message("assistant"):
            if entry.is_grid:
                columns = st.columns(min(len(entry.images), 4))
                for i, source in enumerate(entry.images):
                    with columns[i % len(columns)]:
                        st.image(image_payload(source), use_container_width=True)
                        self.render_download(source, f"download_{idx}_{i}")
                        if st.button("🔍 Expand", key=f"expand_{idx}_{i}"):
                            self.dispatch(ExpandOpened(index=idx, image_index=i))
                            st.rerun()
                st.caption(f"**Prompt:** {entry.prompt}")
                return

            st.image(image_payload(entry.content), width=280)
            st.caption(f"**Prompt:** {entry.prompt}")
            col1, col2, col3 = st.columns(3)
            with col1:
                self.render_download(entry.content, f"download_{idx}")
            with col2:
                can_regenerate = entry.request is not None and not self.state.loading
                if st.button("🔄 Regenerate", key=f"regen_{idx}", disabled=not can_regenerate):
                    self.start_submit(regenerate_index=idx)
            with col3:
                if st.button("🔍 Expand", key=f"expand_{idx}"):
                    self.dispatch(ExpandOpened(index=idx))
                    st.rerun()

    def render_download(self, source: str, key: str):
        payload = image_payload(source)
        if isinstance(payload, bytes):
            st.download_button(
                label="📥 Download",
                data=payload,
                file_name="ai-image.png",
                mime="image/png",
                key=key
            )
        else:
            st.link_button("📥 Download", payload)

    def render_topics(self):
        columns = st.columns(3)
        for idx, (title, desc) in enumerate(TOPICS):
            with columns[idx % 3]:
                with st.container(border=True):
                    st.markdown(f'<span class="topic-title">{title}</span>', unsafe_allow_html=True)
                    st.caption(desc)
                    st.button("Use prompt", key=f"topic_{idx}", on_click=self._pick_topic, args=(desc,))

    def render_feed(self):
        container = st.container(height=500)
        with container:
            if not self.state.chat:
                self.render_topics()
            for idx, entry in enumerate(self.state.chat):
                self.render_entry(idx, entry)
            if self.state.loading:
                with st.chat_message("assistant"):
                    st.markdown("*Generating image...*")

        if self.state.expanded is not None:
            index, image_index = self.state.expanded
            self.dispatch(ExpandClosed())
            if index < len(self.state.chat) and isinstance(self.state.chat[index], ImageEntry):
                entry = self.state.chat[index]
                source = entry.images[image_index or 0]
                expanded_view(source)

    def _select(self, label: str, field: str, choices: List[str]):
        current = getattr(self.state.current_options, field)
        key = self._widget_key(field)
        st.selectbox(
            label, choices,
            index=choices.index(current) if current in choices else 0,
            key=key,
            disabled=self.state.loading,
            on_change=self._on_field, args=(field, key)
        )

    def _number(self, label: str, field: str, min_value: int, max_value: int):
        current = getattr(self.state.current_options, field)
        key = self._widget_key(field)
        st.number_input(
            label, min_value=min_value, max_value=max_value,
            value=min(max(current, min_value), max_value),
            key=key,
            disabled=self.state.loading,
            on_change=self._on_field, args=(field, key)
        )

    def _uploader(self, label: str, slot: str):
        key = self._widget_key(slot)
        st.file_uploader(
            label, type=UPLOAD_TYPES[slot], key=key,
            disabled=self.state.loading,
            on_change=self._on_upload, args=(slot, key)
        )

    def render_prompt(self, max_chars: int):
        key = f"prompt_{st.session_state.form_seed}_{st.session_state.prompt_seed}"
        st.text_area(
            "Prompt",
            value=self.state.prompt,
            placeholder="Describe the image you want to create...",
            max_chars=max_chars,
            key=key,
            disabled=self.state.loading,
            on_change=self._on_prompt, args=(key,)
        )

    def render_generate_form(self):
        options = self.state.current_options
        self._select("Model", "model", models_for("generate"))
        caps = get_capabilities("generate", options.model)
        self.render_prompt(caps.max_prompt_length)

        if caps.supports("background"):
            self._select("Background", "background", ["auto", "transparent", "opaque"])
        if caps.supports("output_format"):
            self._select("Output Format", "output_format", ["png", "jpeg", "webp"])
            if options.output_format in ("jpeg", "webp"):
                self._number("Output Compression (%)", "output_compression", 0, 100)
        if caps.supports("moderation"):
            self._select("Moderation", "moderation", ["auto", "low"])
        if caps.supports("style"):
            self._select("Style", "style", ["vivid", "natural"])

        with st.expander("Advanced Options"):
            self._number("Number of Images", "n", 1, caps.max_n)
            self._select("Size", "size", list(caps.sizes))
            self._select("Quality", "quality", list(caps.qualities))
            if caps.supports("response_format"):
                self._select("Response Format", "response_format", ["url", "b64_json"])
            key = self._widget_key("user")
            st.text_input(
                "User (optional)", value=options.user, placeholder="user id",
                key=key, disabled=self.state.loading,
                on_change=self._on_field, args=("user", key)
            )

    def render_edit_form(self):
        options = self.state.current_options
        col1, col2 = st.columns(2)
        with col1:
            self._uploader("Image to Edit", "image")
        with col2:
            self._uploader("Mask (optional)", "mask")
            if self.state.mask is not None:
                st.caption(f"Mask: {self.state.mask.filename}")

        self._select("Model", "model", models_for("edit"))
        caps = get_capabilities("edit", options.model)
        self.render_prompt(caps.max_prompt_length)
        if caps.supports("background"):
            self._select("Background", "background", ["auto", "transparent", "opaque"])
            self._select("Quality", "quality", list(caps.qualities))
        self._select("Size", "size", list(caps.sizes))

        if self.state.image is not None:
            with st.expander("🖌️ Draw a mask"):
                self.render_mask_canvas(self.state.image)

    def render_mask_canvas(self, image: UploadedAsset):
        try:
            source = Image.open(io.BytesIO(image.data))
            source.load()
        except OSError as e:
            st.error(f"Cannot display image for masking: {e}")
            return

        display_size = self._display_size(source.size)
        col1, col2 = st.columns(2)
        with col1:
            tool = st.radio("Tool", [BRUSH, ERASER], horizontal=True, key="mask_tool")
        with col2:
            radius = st.slider("Brush radius", 1, 50, 15, key="mask_radius")

        canvas_result = st_canvas(
            fill_color="rgba(0, 0, 0, 0)",
            stroke_width=radius * 2,
            stroke_color=ERASER_STROKE if tool == ERASER else BRUSH_STROKE,
            background_image=source.resize(display_size),
            height=display_size[1],
            width=display_size[0],
            drawing_mode="freedraw",
            key=f"mask_canvas_{st.session_state.canvas_seed}",
        )

        col1, col2 = st.columns(2)
        with col1:
            if st.button("Use as mask", type="primary", disabled=self.state.loading):
                editor = MaskEditor(source.width, source.height, radius=radius, display_size=display_size)
                strokes = editor.apply_canvas_json(canvas_result.json_data)
                if strokes == 0:
                    st.warning("Draw on the image to mark the area to edit.")
                else:
                    mask = UploadedAsset(filename="mask.png", content_type="image/png",
                                         data=editor.export_edit_mask())
                    self.dispatch(UploadChanged(slot="mask", asset=mask))
                    st.rerun()
        with col2:
            if st.button("Clear", disabled=self.state.loading):
                st.session_state.canvas_seed += 1
                self.dispatch(UploadChanged(slot="mask", asset=None))
                st.rerun()

    @staticmethod
    def _display_size(size: Tuple[int, int]) -> Tuple[int, int]:
        width, height = size
        if width <= CANVAS_MAX_WIDTH:
            return (width, height)
        return (CANVAS_MAX_WIDTH, max(int(height * CANVAS_MAX_WIDTH / width), 1))

    def render_variation_form(self):
        caps = get_capabilities("variation", self.state.current_options.model)
        self._uploader("Image for Variation", "variation_image")
        col1, col2 = st.columns(2)
        with col1:
            self._number("Number of Variations", "n", 1, caps.max_n)
        with col2:
            self._select("Size", "size", list(caps.sizes))

    def render_form(self):
        st.radio(
            "Mode", MODES,
            index=MODES.index(self.state.mode),
            format_func=MODE_LABELS.get,
            horizontal=True,
            key="mode_picker",
            disabled=self.state.loading,
            on_change=self._on_mode
        )

        if self.state.mode == "generate":
            self.render_generate_form()
        elif self.state.mode == "edit":
            self.render_edit_form()
        else:
            self.render_variation_form()

        if self.state.form_error:
            st.error(self.state.form_error)

        if self.state.loading:
            label = "Editing..." if self.state.mode == "edit" else "Generating..."
        else:
            label = SUBMIT_LABELS[self.state.mode]
        if st.button(label, type="primary", disabled=self.state.loading):
            self.start_submit()

    def render_ui(self):
        """Render the main UI"""
        st.title("🎨 EditAI")
        st.markdown('<p class="subtitle">Describe an image or select a tool. '
                    'Your prompts appear on the right, images on the left.</p>',
                    unsafe_allow_html=True)

        if not st.session_state.api_key:
            col1, col2 = st.columns([3, 1])
            with col1:
                api_key = st.text_input(
                    "🔑 Enter your OpenAI API Key:",
                    type="password",
                    placeholder="sk-...",
                    help="Set OPENAI_API_KEY in the environment or a .env file to skip this step"
                )
            with col2:
                st.write("")
                if st.button("Set API Key", type="primary", use_container_width=True):
                    if api_key:
                        st.session_state.api_key = api_key
                        st.rerun()
                    else:
                        st.error("Please enter an API key")
            st.warning("⚠️ Please enter your OpenAI API key to continue")
            return

        self.render_feed()
        if self.state.error:
            st.error(self.state.error)
        self.render_form()

        with st.sidebar:
            st.header("📊 Session Stats")
            st.metric("Total Images", self.state.image_count)
            st.metric("Chat Entries", len(self.state.chat))

            if st.button("🗑️ Clear Chat", use_container_width=True, disabled=self.state.loading):
                self.dispatch(ChatCleared())
                st.rerun()

            st.divider()
            st.subheader("📖 Quick Guide")
            st.markdown("""
            1. Pick a mode: Generate, Edit or Variation
            2. Fill in the prompt and options
            3. Edit mode: upload an image and optionally draw a mask
            4. Download, regenerate or expand results
            """)

        # send after the page shows the Submitting state
        if st.session_state.pending is not None:
            self.run_pending()


def main():
    """Main application entry point"""
    app = EditAIChat()
    app.render_ui()


if __name__ == "__main__":
    main()
