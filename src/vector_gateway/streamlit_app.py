import os
import re

import requests
import streamlit as st

API_BASE = os.getenv("GATEWAY_API_BASE", os.getenv("API_BASE", "http://localhost:3000")).rstrip("/")
REQUEST_TIMEOUT_SEC = float(os.getenv("GATEWAY_UI_TIMEOUT_SEC", "180"))

MODES = {
    "Outline PDF text (Ghostscript)": ("/api/outline", ["pdf"]),
    "Convert CDR to PDF": ("/api/cdr-to-pdf", ["cdr"]),
}


def filename_from_disposition(header: str | None, default: str) -> str:
    if not header:
        return default
    m = re.search(r'filename\*?=(?:UTF-8\'\')?"?([^";]+)"?', header)
    return m.group(1) if m else default


def request_conversion(
    endpoint: str,
    name: str,
    data: bytes,
    content_type: str | None,
    *,
    api_base: str = API_BASE,
) -> tuple[bytes, str]:
    """Upload a file to a gateway endpoint and return (pdf_bytes, filename).

    Raises RuntimeError with the server's message on a non-200 response.
    """
    files = {"file": (name, data, content_type or "application/octet-stream")}
    resp = requests.post(f"{api_base}{endpoint}", files=files, timeout=REQUEST_TIMEOUT_SEC)
    if resp.status_code != 200:
        raise RuntimeError(f"{resp.status_code}: {resp.text}")
    return resp.content, filename_from_disposition(resp.headers.get("content-disposition"), "converted.pdf")


def _reset_state() -> None:
    for key in ("result_bytes", "result_name", "error"):
        st.session_state.pop(key, None)
    # Bump the uploader key to clear any previously uploaded file widget state
    st.session_state["upload_key"] = st.session_state.get("upload_key", 0) + 1


def main() -> None:
    st.set_page_config(page_title="Vector Conversion Gateway", page_icon="🖨️", layout="centered")
    st.title("🖨️ Vector Conversion Gateway")
    st.caption(f"API base: {API_BASE}")

    if st.button("Restart", type="secondary"):
        _reset_state()
        st.rerun()

    mode = st.radio("Conversion", list(MODES))
    endpoint, types = MODES[mode]

    if "upload_key" not in st.session_state:
        st.session_state["upload_key"] = 0
    uploaded = st.file_uploader(
        "Upload a document",
        type=types,  # type: ignore[arg-type]
        key=f"uploader-{st.session_state['upload_key']}",
    )

    if uploaded and st.button("Convert", type="primary"):
        with st.spinner("Converting..."):
            try:
                data, name = request_conversion(endpoint, uploaded.name, uploaded.getvalue(), uploaded.type)
            except (requests.RequestException, RuntimeError) as e:
                st.session_state["error"] = f"Conversion failed: {e}"
            else:
                st.session_state["result_bytes"] = data
                st.session_state["result_name"] = name
                st.session_state.pop("error", None)

    if "result_bytes" in st.session_state:
        st.success("Conversion complete!")
        st.download_button(
            label=f"Download {st.session_state['result_name']}",
            data=st.session_state["result_bytes"],
            file_name=st.session_state["result_name"],
            mime="application/pdf",
        )

    if err := st.session_state.get("error"):
        st.error(err)


if __name__ == "__main__":
    main()
