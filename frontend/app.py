import datetime

import streamlit as st
from PIL import Image, UnidentifiedImageError
from io import BytesIO

from frontend.client import (
    AUTH_STEP,
    BACKEND_URL,
    GENERATE_FAILED,
    GENERATING_STEP,
    RESULT_STEP,
    UPLOAD_STEP,
    GenerationFailed,
    request_generation,
    verify_pin,
)

STYLES = {
    "anime": "🌸 Anime",
    "cartoon": "🧸 3D Cartoon",
}


def go(step: str) -> None:
    st.session_state["step"] = step
    st.rerun()


def reset() -> None:
    for key in ("upload_bytes", "upload_name", "upload_type", "result", "error"):
        st.session_state.pop(key, None)
    go(UPLOAD_STEP)


# ==========================
# Config
# ==========================
st.set_page_config(
    page_title="Family Photo Toon",
    page_icon="🎨",
    layout="centered",
)

if "step" not in st.session_state:
    st.session_state["step"] = AUTH_STEP

st.title("🎨 Family Photo Toon")
step = st.session_state["step"]

# ==========================
# Auth
# ==========================
if step == AUTH_STEP:
    st.caption("Enter the family PIN to start")
    pin = st.text_input("PIN", type="password", max_chars=12)
    if st.button("Unlock", use_container_width=True):
        problem = verify_pin(pin)
        if problem:
            st.error(problem)
        else:
            st.session_state["pin"] = pin
            go(UPLOAD_STEP)

# ==========================
# Upload
# ==========================
elif step == UPLOAD_STEP:
    uploaded = st.file_uploader("📷 Choose a photo", type=["png", "jpg", "jpeg", "webp"])
    style = st.radio(
        "Style",
        list(STYLES.keys()),
        format_func=lambda s: STYLES[s],
        horizontal=True,
    )

    if uploaded is not None:
        st.image(uploaded.getvalue(), caption="Preview", use_container_width=True)

    if st.session_state.get("error"):
        st.error(st.session_state["error"])

    if st.button("✨ Transform", use_container_width=True, disabled=uploaded is None):
        st.session_state["upload_bytes"] = uploaded.getvalue()
        st.session_state["upload_name"] = uploaded.name
        st.session_state["upload_type"] = uploaded.type or "image/png"
        st.session_state["style"] = style
        st.session_state.pop("error", None)
        go(GENERATING_STEP)

# ==========================
# Generating
# ==========================
elif step == GENERATING_STEP:
    with st.spinner("🎨 Creating your picture, this can take a minute..."):
        try:
            result = request_generation(
                st.session_state["pin"],
                st.session_state["upload_bytes"],
                st.session_state["upload_name"],
                st.session_state["upload_type"],
                st.session_state.get("style", "anime"),
            )
            Image.open(BytesIO(result)).verify()
        except (GenerationFailed, UnidentifiedImageError):
            st.session_state["error"] = GENERATE_FAILED
            go(UPLOAD_STEP)
        else:
            st.session_state["result"] = result
            go(RESULT_STEP)

# ==========================
# Result
# ==========================
elif step == RESULT_STEP:
    result = st.session_state.get("result")
    if not result:
        reset()
    st.image(result, caption="✨ Result", use_container_width=True)

    ts = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
    col1, col2 = st.columns(2)
    with col1:
        st.download_button(
            "⬇️ Download",
            data=result,
            file_name=f"cartoon-{ts}.png",
            mime="image/png",
            use_container_width=True,
        )
    with col2:
        if st.button("🔁 Try another", use_container_width=True):
            reset()

with st.sidebar:
    st.write("🔗 Backend:", BACKEND_URL)
