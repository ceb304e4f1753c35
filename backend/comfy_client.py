import asyncio
import logging
import mimetypes
from pathlib import Path
from typing import Dict, Any, Optional, Tuple

import httpx

from .errors import BackendResponseError, BackendUnavailableError, JobTimeoutError

logger = logging.getLogger(__name__)


def _check_response(r: httpx.Response, what: str) -> None:
    if r.status_code == 200:
        return
    detail = r.text[:500]
    try:
        error_data = r.json()
        if isinstance(error_data, dict):
            if "error" in error_data:
                detail = f"{error_data['error']}"
            if error_data.get("node_errors"):
                detail += f" node_errors={error_data['node_errors']}"
    except ValueError:
        pass
    raise BackendResponseError(f"ComfyUI {what} returned {r.status_code}: {detail}")


async def upload_image_to_comfy(client: httpx.AsyncClient, base_url: str, image_path: Path) -> str:
    """
    Push a local image into ComfyUI's input folder via /upload/image.
    Returns the name LoadImage should reference (subfolder-qualified if any).
    """
    mime = mimetypes.guess_type(image_path.name)[0] or "image/png"
    try:
        r = await client.post(
            f"{base_url}/upload/image",
            files={"image": (image_path.name, image_path.read_bytes(), mime)},
            data={"overwrite": "true", "type": "input"},
        )
    except httpx.RequestError as e:
        raise BackendUnavailableError(f"ComfyUI upload failed: {e}") from e
    _check_response(r, "upload")

    data = r.json()
    name = data.get("name")
    if not name:
        raise BackendResponseError(f"ComfyUI upload returned no name: {data}")
    subfolder = data.get("subfolder") or ""
    return f"{subfolder}/{name}" if subfolder else name


async def send_workflow_to_comfy(
    client: httpx.AsyncClient,
    base_url: str,
    workflow_json: Dict[str, Any],
    client_id: Optional[str] = None,
) -> str:
    """
    Queue a workflow (dict) on ComfyUI /prompt.
    Returns the prompt_id used to look it up in /history.
    """
    payload = {
        "prompt": workflow_json,
        "client_id": client_id,
    }
    try:
        r = await client.post(f"{base_url}/prompt", json=payload)
    except httpx.RequestError as e:
        raise BackendUnavailableError(f"ComfyUI /prompt failed: {e}") from e
    _check_response(r, "/prompt")

    data = r.json()
    # ComfyUI returns {"prompt_id": "...", "number": ..., "node_errors": {}}
    prompt_id = data.get("prompt_id")
    if not prompt_id:
        raise BackendResponseError(f"ComfyUI returned no prompt_id: {data}")
    logger.info("ComfyUI queued prompt_id=%s", prompt_id)
    return prompt_id


async def fetch_history(client: httpx.AsyncClient, base_url: str, prompt_id: str) -> Optional[Dict[str, Any]]:
    """
    Read /history/{prompt_id} once. Returns history[prompt_id], or None if not recorded yet.
    """
    try:
        r = await client.get(f"{base_url}/history/{prompt_id}")
    except httpx.RequestError as e:
        raise BackendUnavailableError(f"ComfyUI /history failed: {e}") from e
    _check_response(r, "/history")

    data = r.json()
    return data.get(prompt_id) if isinstance(data, dict) else None


async def wait_for_history(
    client: httpx.AsyncClient,
    base_url: str,
    prompt_id: str,
    timeout: float,
    poll_interval: float = 0.5,
) -> Dict[str, Any]:
    """
    Poll /history/{prompt_id} until ComfyUI has recorded the job.
    The finished event can arrive before the history write, so one empty read is not an error.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        history_item = await fetch_history(client, base_url, prompt_id)
        if history_item is not None:
            return history_item
        if loop.time() + poll_interval > deadline:
            raise JobTimeoutError(f"ComfyUI history has no entry for {prompt_id} after {timeout}s")
        logger.debug("History for %s not recorded yet, polling again", prompt_id)
        await asyncio.sleep(poll_interval)


def extract_output_image(history_item: Dict[str, Any], node_id: str) -> Optional[Tuple[str, str, str]]:
    """
    First image written by the given output node.
    Returns (filename, subfolder, type) or None.
    """
    node_out = history_item.get("outputs", {}).get(node_id) or {}
    images = node_out.get("images")
    if not images:
        return None
    img = images[0]
    filename = img.get("filename")
    if not filename:
        return None
    return filename, img.get("subfolder", ""), img.get("type", "output")


async def fetch_image(
    client: httpx.AsyncClient,
    base_url: str,
    filename: str,
    subfolder: str,
    img_type: str,
) -> bytes:
    try:
        r = await client.get(
            f"{base_url}/view",
            params={"filename": filename, "subfolder": subfolder, "type": img_type},
        )
    except httpx.RequestError as e:
        raise BackendUnavailableError(f"ComfyUI /view failed: {e}") from e
    _check_response(r, "/view")
    return r.content


async def comfy_is_up(client: httpx.AsyncClient, base_url: str) -> bool:
    r = await client.get(f"{base_url}/system_stats")
    return r.status_code == 200
