import os
from typing import Optional

import requests

BACKEND_URL = os.getenv("BACKEND_URL", "http://127.0.0.1:3001")

AUTH_STEP = "auth"
UPLOAD_STEP = "upload"
GENERATING_STEP = "generating"
RESULT_STEP = "result"

WRONG_PIN = "Wrong PIN"
NO_SERVER = "Cannot connect to server"
GENERATE_FAILED = "Failed to generate. Please try again."


class GenerationFailed(Exception):
    pass


def verify_pin(pin: str, backend_url: str = BACKEND_URL) -> Optional[str]:
    """POST /auth. Returns None when the PIN is accepted, otherwise the message to show."""
    try:
        resp = requests.post(f"{backend_url}/auth", json={"pin": pin}, timeout=10)
    except requests.RequestException:
        return NO_SERVER
    return None if resp.ok else WRONG_PIN


def request_generation(
    pin: str,
    image_bytes: bytes,
    filename: str,
    mime: str,
    style: str,
    backend_url: str = BACKEND_URL,
    timeout: float = 300.0,
) -> bytes:
    """POST /generate and return the PNG bytes. Raises GenerationFailed on any error."""
    try:
        resp = requests.post(
            f"{backend_url}/generate",
            headers={"X-Family-Pin": pin},
            files={"image": (filename, image_bytes, mime)},
            data={"style": style},
            timeout=timeout,
        )
    except requests.RequestException as e:
        raise GenerationFailed(str(e)) from e

    if not resp.ok:
        try:
            detail = resp.json().get("error", resp.text)
        except ValueError:
            detail = resp.text
        raise GenerationFailed(f"{resp.status_code}: {detail}")
    return resp.content
