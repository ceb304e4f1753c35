import base64
import binascii
import logging
from typing import Dict, Any

import httpx

from .errors import BackendResponseError, BackendUnavailableError
from .prompts import StylePrompt

logger = logging.getLogger(__name__)

IMG2IMG_PARAMS: Dict[str, Any] = {
    "steps": 30,
    "cfg_scale": 7,
    "width": 512,
    "height": 512,
    "denoising_strength": 0.6,
    "sampler_name": "DPM++ 2M Karras",
    "batch_size": 1,
    "n_iter": 1,
}


def build_img2img_payload(image_bytes: bytes, prompt: StylePrompt) -> Dict[str, Any]:
    return {
        "init_images": [base64.b64encode(image_bytes).decode("ascii")],
        "prompt": prompt.positive,
        "negative_prompt": prompt.negative,
        **IMG2IMG_PARAMS,
    }


async def img2img(client: httpx.AsyncClient, base_url: str, image_bytes: bytes, prompt: StylePrompt) -> bytes:
    """
    One blocking call to /sdapi/v1/img2img. Returns the first generated image decoded.
    """
    try:
        r = await client.post(f"{base_url}/sdapi/v1/img2img", json=build_img2img_payload(image_bytes, prompt))
    except httpx.RequestError as e:
        raise BackendUnavailableError(f"A1111 unreachable: {e}") from e

    if r.status_code != 200:
        raise BackendResponseError(f"A1111 returned {r.status_code}: {r.text[:500]}")

    try:
        images = r.json().get("images") or []
    except ValueError as e:
        raise BackendResponseError(f"A1111 returned invalid JSON: {e}") from e
    if not images:
        raise BackendResponseError("No image generated")

    try:
        return base64.b64decode(images[0], validate=True)
    except (binascii.Error, TypeError) as e:
        raise BackendResponseError(f"A1111 image was not valid base64: {e}") from e


async def a1111_is_up(client: httpx.AsyncClient, base_url: str) -> bool:
    r = await client.get(f"{base_url}/sdapi/v1/sd-models")
    return r.status_code == 200
