"""
app.py - Streamlit UI for the Counselling FAQ Assistant
========================================================

A thin chat client for the FastAPI backend (backend/main.py). All of the
retrieval, safety triage and LLM work happens on the server; this app only
sends the message to POST /chat and renders the NDJSON stream as it arrives.

FLOW:
1. User enters a question (or clicks a demo question)
2. The question is posted to the backend's /chat endpoint
3. Answer chunks are written to the page as they stream in
4. Up to two related FAQs from the final frame are shown underneath

Run with: streamlit run app.py
(start the backend first: uvicorn backend.main:app --port 8000)
"""

import json

import requests
import streamlit as st

from config import BACKEND_URL, COUNSELLING_EMAIL, DEMO_QUESTIONS, ORGANISATION_NAME

REQUEST_TIMEOUT = (5, 120)  # (connect, read) seconds


# =============================================================================
# PAGE CONFIGURATION
# =============================================================================

st.set_page_config(
    page_title=f"{ORGANISATION_NAME} - FAQ Assistant",
    page_icon="💬",
    layout="centered",
    initial_sidebar_state="collapsed",
)

st.markdown("""
<style>
    /* Style for demo buttons */
    .stButton > button {
        width: 100%;
        text-align: left;
        padding: 10px 15px;
    }
</style>
""", unsafe_allow_html=True)


# =============================================================================
# BACKEND CLIENT
# =============================================================================

def stream_chat(message: str, result: dict):
    """
    Post a message to /chat and yield answer text as it streams in.

    The final frame's suggestions (or error) are stored in `result` so they
    can be shown once the stream is finished.

    Args:
        message: The user's question
        result: Dict that receives "suggestions" and "error"
    """
    try:
        response = requests.post(
            f"{BACKEND_URL}/chat",
            json={"message": message},
            stream=True,
            timeout=REQUEST_TIMEOUT,
        )
    except requests.RequestException:
        result["error"] = "Could not reach the assistant. Is the backend running?"
        return

    with response:
        if response.status_code != 200:
            try:
                result["error"] = response.json().get("reply", "Something went wrong.")
            except ValueError:
                result["error"] = "Something went wrong."
            return

        for line in response.iter_lines(decode_unicode=True):
            if not line:
                continue
            try:
                frame = json.loads(line)
            except json.JSONDecodeError:
                continue
            if frame.get("chunk"):
                yield frame["chunk"]
            if frame.get("done"):
                result["suggestions"] = frame.get("suggestions") or []
                result["error"] = frame.get("error")
                break


@st.cache_data(ttl=60)
def fetch_stats() -> dict:
    """Knowledge base stats from the backend (empty when unreachable)."""
    try:
        response = requests.get(f"{BACKEND_URL}/stats", timeout=5)
        response.raise_for_status()
        return response.json()
    except requests.RequestException:
        return {}


# =============================================================================
# SESSION STATE INITIALIZATION
# =============================================================================

def init_session_state():
    """Initialize session state variables for chat history."""
    if "messages" not in st.session_state:
        st.session_state.messages = []

    if "pending_question" not in st.session_state:
        st.session_state.pending_question = None


init_session_state()


def reset_conversation():
    """Reset the conversation to start fresh."""
    st.session_state.messages = []
    st.session_state.pending_question = None


# =============================================================================
# HEADER
# =============================================================================

st.title("💬 Counselling FAQ Assistant")
st.markdown(f"*Answers from the {ORGANISATION_NAME} FAQs*")
st.markdown("---")

st.markdown("**Try a demo question:**")

cols = st.columns(len(DEMO_QUESTIONS))

for i, question in enumerate(DEMO_QUESTIONS):
    with cols[i]:
        display_text = question[:40] + "..." if len(question) > 40 else question
        if st.button(display_text, key=f"demo_{i}", help=question):
            st.session_state.pending_question = question

st.markdown("---")


# =============================================================================
# CHAT HISTORY DISPLAY
# =============================================================================

def display_suggestions(suggestions: list[dict]):
    if not suggestions:
        return
    with st.expander("📌 **Related FAQs**"):
        for suggestion in suggestions:
            st.markdown(f"**{suggestion['question']}**")
            st.markdown(suggestion["answer"])


def display_message(message: dict):
    """Display a single chat message with related FAQs if applicable."""
    with st.chat_message(message["role"]):
        st.markdown(message["content"])
        if message["role"] == "assistant":
            display_suggestions(message.get("suggestions", []))


for message in st.session_state.messages:
    display_message(message)


# =============================================================================
# CHAT INPUT HANDLING
# =============================================================================

def process_user_input(user_input: str):
    """Send the question to the backend and stream the answer onto the page."""
    st.session_state.messages.append({"role": "user", "content": user_input})

    with st.chat_message("user"):
        st.markdown(user_input)

    result = {"suggestions": [], "error": None}
    with st.chat_message("assistant"):
        answer = st.write_stream(stream_chat(user_input, result)) or ""
        if result["error"]:
            st.error(f"⚠️ {result['error']}")
            answer = answer or result["error"]
        display_suggestions(result["suggestions"])

    st.session_state.messages.append({
        "role": "assistant",
        "content": answer,
        "suggestions": result["suggestions"],
    })


# Check for pending question from demo button
if st.session_state.pending_question:
    question = st.session_state.pending_question
    st.session_state.pending_question = None
    process_user_input(question)
    st.rerun()

user_input = st.chat_input("Ask a question about counselling services...")

if user_input:
    process_user_input(user_input)
    st.rerun()


# =============================================================================
# SIDEBAR
# =============================================================================

with st.sidebar:
    st.markdown("### About")
    st.markdown(f"""
    This assistant answers questions about **{ORGANISATION_NAME}**
    using the service's own FAQs.

    ⚠️ **Not a substitute for counselling** - for anything personal,
    write to {COUNSELLING_EMAIL}.

    ---

    **How it works:**
    1. Your question is checked for anything urgent
    2. Matching FAQs are found by meaning and by keywords
    3. An answer is written from those FAQs only
    """)

    st.markdown("---")

    stats = fetch_stats()
    st.markdown("### Knowledge Base")
    if stats:
        st.markdown(f"- **FAQs:** {stats.get('total_faqs', 0)}")
        st.markdown(f"- **Vectors:** {stats.get('indexed_vectors', 0)}")
        st.markdown(f"- **LLM:** {stats.get('llm_provider', 'unknown')}")
    else:
        st.markdown("*Backend not reachable*")

    st.markdown("---")

    if st.button("🔄 Start New Conversation"):
        reset_conversation()
        st.rerun()

    st.markdown("---")
    st.markdown("*Built with Streamlit + FastAPI + FAISS*")
