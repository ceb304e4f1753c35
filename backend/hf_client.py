import base64
import logging
from typing import Dict, Optional

import httpx

from .errors import BackendResponseError, BackendUnavailableError, ModelLoadingError

logger = logging.getLogger(__name__)


def auth_headers(api_token: Optional[str]) -> Dict[str, str]:
    headers = {"Accept": "image/png"}
    if api_token:
        headers["Authorization"] = f"Bearer {api_token}"
    return headers


def _image_or_raise(r: httpx.Response, model: str) -> bytes:
    if r.status_code == 503:
        # Inference API answers 503 while the model is being loaded onto a worker
        raise ModelLoadingError(f"{model} is loading: {r.text[:300]}")
    if r.status_code != 200:
        raise BackendResponseError(f"{model} returned {r.status_code}: {r.text[:300]}")
    if not r.headers.get("content-type", "").startswith("image/"):
        raise BackendResponseError(f"{model} returned {r.headers.get('content-type')!r} instead of an image")
    return r.content


async def edit_image(
    client: httpx.AsyncClient,
    api_url: str,
    model: str,
    image_bytes: bytes,
    instruction: str,
    api_token: Optional[str] = None,
) -> bytes:
    """Image-conditioned edit with an instruction-following model."""
    payload = {
        "inputs": base64.b64encode(image_bytes).decode("ascii"),
        "parameters": {"prompt": instruction},
    }
    try:
        r = await client.post(f"{api_url}/{model}", json=payload, headers=auth_headers(api_token))
    except httpx.RequestError as e:
        raise BackendUnavailableError(f"{model} unreachable: {e}") from e
    return _image_or_raise(r, model)


async def text_to_image(
    client: httpx.AsyncClient,
    api_url: str,
    model: str,
    prompt: str,
    negative_prompt: Optional[str] = None,
    api_token: Optional[str] = None,
) -> bytes:
    payload: Dict[str, object] = {"inputs": prompt}
    if negative_prompt:
        payload["parameters"] = {"negative_prompt": negative_prompt}
    try:
        r = await client.post(f"{api_url}/{model}", json=payload, headers=auth_headers(api_token))
    except httpx.RequestError as e:
        raise BackendUnavailableError(f"{model} unreachable: {e}") from e
    return _image_or_raise(r, model)


async def model_is_up(client: httpx.AsyncClient, hub_url: str, model: str, api_token: Optional[str] = None) -> bool:
    headers = {"Authorization": f"Bearer {api_token}"} if api_token else {}
    r = await client.get(f"{hub_url}/{model}", headers=headers)
    return r.status_code == 200
