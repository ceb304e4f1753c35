"""
Completion waiter for ComfyUI jobs.

ComfyUI pushes progress over a websocket bound to a client_id. The socket has to be
open before the prompt is queued, otherwise a fast job can finish unseen, so the
waiter is an async context manager: open it, queue with `waiter.client_id`, then
`await waiter.wait_for(prompt_id)`.
"""

import asyncio
import json
import logging
import uuid
from typing import Any, Dict, Optional
from urllib.parse import urlsplit, urlunsplit

import aiohttp

from .errors import BackendResponseError, JobChannelError, JobTimeoutError

logger = logging.getLogger(__name__)

FAILURE_EVENTS = ("execution_error", "execution_interrupted")


def ws_url_for(base_url: str, client_id: str) -> str:
    parts = urlsplit(base_url)
    scheme = "wss" if parts.scheme == "https" else "ws"
    path = parts.path.rstrip("/") + "/ws"
    return urlunsplit((scheme, parts.netloc, path, f"clientId={client_id}", ""))


def _parse_event(raw: Any) -> Optional[Dict[str, Any]]:
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(payload, dict):
        return None
    data = payload.get("data")
    if not isinstance(data, dict):
        data = {}
    return {"type": payload.get("type"), "data": data}


def is_completion(event: Dict[str, Any], prompt_id: str) -> bool:
    data = event["data"]
    if data.get("prompt_id") != prompt_id:
        return False
    if event["type"] == "executing" and data.get("node") is None:
        return True
    return event["type"] == "execution_success"


class JobWaiter:
    def __init__(
        self,
        base_url: str,
        timeout: float,
        client_id: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.client_id = client_id or uuid.uuid4().hex
        self._session = session
        self._owns_session = session is None
        self._ws = None

    async def __aenter__(self) -> "JobWaiter":
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=None, sock_connect=self.timeout)
            )
        url = ws_url_for(self.base_url, self.client_id)
        try:
            # The handshake counts against the job bound too
            self._ws = await asyncio.wait_for(self._session.ws_connect(url, heartbeat=30), timeout=self.timeout)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            await self._close_session()
            raise JobChannelError(f"could not open ComfyUI websocket {url}: {e}") from e
        logger.debug("Opened ComfyUI websocket for client_id=%s", self.client_id)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        await self._close_session()

    async def _close_session(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def wait_for(self, prompt_id: str) -> None:
        """
        Block until ComfyUI reports prompt_id finished.
        Raises JobTimeoutError after self.timeout seconds, JobChannelError if the
        socket drops and BackendResponseError if ComfyUI reports the job failed.
        """
        if self._ws is None:
            raise JobChannelError("websocket is not open")
        try:
            await asyncio.wait_for(self._listen(prompt_id), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise JobTimeoutError(f"no completion for prompt_id={prompt_id} within {self.timeout}s") from e
        finally:
            await self.close()

    async def _listen(self, prompt_id: str) -> None:
        while True:
            message = await self._ws.receive()

            if message.type == aiohttp.WSMsgType.TEXT:
                event = _parse_event(message.data)
                if event is None:
                    logger.debug("Ignoring malformed websocket message")
                    continue
                if is_completion(event, prompt_id):
                    logger.info("ComfyUI finished prompt_id=%s", prompt_id)
                    return
                if event["type"] in FAILURE_EVENTS and event["data"].get("prompt_id") == prompt_id:
                    data = event["data"]
                    raise BackendResponseError(
                        f"ComfyUI {event['type']} for {prompt_id}: "
                        f"{data.get('exception_message') or data}"
                    )
                continue

            if message.type in (
                aiohttp.WSMsgType.CLOSE,
                aiohttp.WSMsgType.CLOSING,
                aiohttp.WSMsgType.CLOSED,
                aiohttp.WSMsgType.ERROR,
            ):
                raise JobChannelError(f"ComfyUI websocket closed while waiting for {prompt_id}")

            # BINARY frames are latent previews
