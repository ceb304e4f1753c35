# backend/generators.py
"""
Image backends behind one contract: generate(image_path, style) -> PNG bytes.

One generator is wired per deployment (Settings.backend); the HTTP layer never
branches on which one it got.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import aiohttp
import httpx

from config.settings import Settings
from . import a1111_client, comfy_client, hf_client
from .errors import BackendResponseError, ModelLoadingError
from .job_waiter import JobWaiter
from .prompts import get_style_prompt, resolve_style
from .workflow_builder import OUTPUT_NODE_ID, build_style_workflow

logger = logging.getLogger(__name__)

HEALTH_TIMEOUT = 5.0


class ImageGenerator:
    name: str = "generic"
    # True when the backend looks at the file name (ComfyUI LoadImage needs an extension)
    needs_extension: bool = False
    failure_message: str = "Generation failed. Please try again."

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self._transport = transport

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout if timeout is not None else self.settings.request_timeout,
            transport=self._transport,
        )

    @property
    def base_url(self) -> str:
        return self.settings.backend_url

    async def generate(self, image_path: Path, style: str) -> bytes:
        raise NotImplementedError

    async def health(self) -> bool:
        raise NotImplementedError


class A1111Generator(ImageGenerator):
    name = "a1111"
    failure_message = "Generation failed. Is Automatic1111 running with --api flag?"

    async def generate(self, image_path: Path, style: str) -> bytes:
        prompt = get_style_prompt(style)
        logger.info("A1111 img2img, style=%s", resolve_style(style))
        async with self._client() as client:
            return await a1111_client.img2img(client, self.settings.a1111_url, image_path.read_bytes(), prompt)

    async def health(self) -> bool:
        async with self._client(HEALTH_TIMEOUT) as client:
            return await a1111_client.a1111_is_up(client, self.settings.a1111_url)


class ComfyUIGenerator(ImageGenerator):
    name = "comfyui"
    needs_extension = True
    failure_message = "Generation failed. Is ComfyUI running?"

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        ws_session: Optional[aiohttp.ClientSession] = None,
    ):
        super().__init__(settings, transport)
        self._ws_session = ws_session

    def _waiter(self) -> JobWaiter:
        return JobWaiter(self.settings.comfyui_url, self.settings.job_timeout, session=self._ws_session)

    async def generate(self, image_path: Path, style: str) -> bytes:
        base_url = self.settings.comfyui_url
        prompt = get_style_prompt(style)

        async with self._client() as client:
            image_name = await comfy_client.upload_image_to_comfy(client, base_url, image_path)
            workflow = build_style_workflow(prompt, image_name, self.settings.comfyui_checkpoint)
            logger.info("ComfyUI job for %s, style=%s, %d nodes", image_name, resolve_style(style), len(workflow))

            loop = asyncio.get_running_loop()
            deadline = loop.time() + self.settings.job_timeout
            async with self._waiter() as waiter:
                prompt_id = await comfy_client.send_workflow_to_comfy(
                    client, base_url, workflow, client_id=waiter.client_id
                )
                await waiter.wait_for(prompt_id)

            history_item = await comfy_client.wait_for_history(
                client, base_url, prompt_id,
                timeout=max(deadline - loop.time(), self.settings.poll_interval),
                poll_interval=self.settings.poll_interval,
            )
            img_info = comfy_client.extract_output_image(history_item, OUTPUT_NODE_ID)
            if not img_info:
                raise BackendResponseError(f"no output image at node {OUTPUT_NODE_ID} for {prompt_id}")

            filename, subfolder, img_type = img_info
            return await comfy_client.fetch_image(client, base_url, filename, subfolder, img_type)

    async def health(self) -> bool:
        async with self._client(HEALTH_TIMEOUT) as client:
            return await comfy_client.comfy_is_up(client, self.settings.comfyui_url)


class HostedModelGenerator(ImageGenerator):
    name = "hf"
    failure_message = "Generation failed. The hosted model did not return an image."

    async def generate(self, image_path: Path, style: str) -> bytes:
        s = self.settings
        prompt = get_style_prompt(style)
        async with self._client() as client:
            try:
                return await hf_client.edit_image(
                    client, s.hf_api_url, s.hf_edit_model, image_path.read_bytes(),
                    prompt.instruction, api_token=s.hf_api_token,
                )
            except ModelLoadingError:
                raise
            except Exception as e:
                # Text-only fallback: the result no longer depends on the uploaded photo
                logger.warning(
                    "%s failed (%s), falling back to text-to-image with %s; input image is ignored",
                    s.hf_edit_model, e, s.hf_fallback_model,
                )

            return await hf_client.text_to_image(
                client, s.hf_api_url, s.hf_fallback_model, prompt.positive,
                negative_prompt=prompt.negative, api_token=s.hf_api_token,
            )

    async def health(self) -> bool:
        s = self.settings
        async with self._client(HEALTH_TIMEOUT) as client:
            return await hf_client.model_is_up(client, s.hf_hub_url, s.hf_edit_model, s.hf_api_token)


GENERATORS = {
    A1111Generator.name: A1111Generator,
    ComfyUIGenerator.name: ComfyUIGenerator,
    HostedModelGenerator.name: HostedModelGenerator,
}


def build_generator(settings: Settings) -> ImageGenerator:
    try:
        cls = GENERATORS[settings.backend]
    except KeyError:
        raise ValueError(f"Unknown image backend {settings.backend!r}") from None
    return cls(settings)
