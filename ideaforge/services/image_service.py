import asyncio
import logging
import random
import uuid

import httpx

from ideaforge.config import settings
from ideaforge.errors import GenerationError, RateLimitedError
from ideaforge.services.retry_policy import Sleep

logger = logging.getLogger(__name__)


class ImageService:
    """Renders UI mockups through a ComfyUI server."""

    def __init__(
        self,
        base_url: str | None = None,
        image_size: int | None = None,
        poll_interval: float = 1.0,
        max_polls: int = 300,
        sleep: Sleep = asyncio.sleep,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.comfyui_url).rstrip("/")
        self.image_size = image_size or settings.image_size
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self.sleep = sleep
        self.client_id = str(uuid.uuid4())
        self._transport = transport

    def build_workflow(self, prompt: str, seed: int | None = None) -> dict:
        """Text-to-image workflow: checkpoint -> encode -> sample -> decode -> save."""
        if seed is None:
            seed = random.randint(0, 2**32 - 1)

        return {
            "1": {
                "class_type": "CheckpointLoaderSimple",
                "inputs": {"ckpt_name": "sd_xl_base_1.0.safetensors"},
            },
            "2": {
                "class_type": "CLIPTextEncode",
                "inputs": {"clip": ["1", 1], "text": prompt},
            },
            "3": {
                "class_type": "CLIPTextEncode",
                "inputs": {"clip": ["1", 1], "text": "blurry, distorted text, watermark"},
            },
            "4": {
                "class_type": "EmptyLatentImage",
                "inputs": {
                    "batch_size": 1,
                    "height": self.image_size,
                    "width": self.image_size,
                },
            },
            "5": {
                "class_type": "KSampler",
                "inputs": {
                    "model": ["1", 0],
                    "positive": ["2", 0],
                    "negative": ["3", 0],
                    "latent_image": ["4", 0],
                    "seed": seed,
                    "steps": 25,
                    "cfg": 6.5,
                    "sampler_name": "euler",
                    "scheduler": "normal",
                    "denoise": 1.0,
                },
            },
            "6": {
                "class_type": "VAEDecode",
                "inputs": {"samples": ["5", 0], "vae": ["1", 2]},
            },
            "7": {
                "class_type": "SaveImage",
                "inputs": {"filename_prefix": "ideaforge", "images": ["6", 0]},
            },
        }

    async def generate(self, prompt: str, seed: int | None = None) -> bytes:
        """
        Queue a workflow and wait for the rendered PNG.

        Returns:
            Raw image bytes

        Raises:
            RateLimitedError: The server answered 429 when queueing
            GenerationError: Queueing, execution or download failed
        """
        payload = {"prompt": self.build_workflow(prompt, seed), "client_id": self.client_id}
        logger.info(f"[comfyui] Queueing mockup: {prompt[:80]}...")

        async with httpx.AsyncClient(timeout=60.0, transport=self._transport) as client:
            try:
                response = await client.post(f"{self.base_url}/prompt", json=payload)
            except httpx.ConnectError as e:
                logger.error(f"[comfyui] Connection failed - is ComfyUI running at {self.base_url}?")
                raise GenerationError(f"Cannot connect to ComfyUI: {e}")

            if response.status_code == 429:
                raise RateLimitedError("Image server rate limit exceeded")
            if response.status_code != 200:
                logger.error(f"[comfyui] HTTP {response.status_code}: {response.text[:300]}")
                raise GenerationError(f"ComfyUI error ({response.status_code}): {response.text[:300]}")

            prompt_id = response.json()["prompt_id"]
            logger.info(f"[comfyui] Queued job {prompt_id}")
            return await self._wait_for_image(client, prompt_id)

    async def _wait_for_image(self, client: httpx.AsyncClient, prompt_id: str) -> bytes:
        for attempt in range(self.max_polls):
            response = await client.get(f"{self.base_url}/history/{prompt_id}")
            if response.status_code == 200:
                entry = response.json().get(prompt_id)
                if entry:
                    status = entry.get("status", {})
                    if status.get("status_str") == "error":
                        raise GenerationError(f"ComfyUI execution failed: {status.get('messages')}")

                    for output in entry.get("outputs", {}).values():
                        if "images" not in output:
                            continue
                        image_info = output["images"][0]
                        image_response = await client.get(
                            f"{self.base_url}/view",
                            params={
                                "filename": image_info["filename"],
                                "subfolder": image_info.get("subfolder", ""),
                                "type": image_info.get("type", "output"),
                            },
                        )
                        if image_response.status_code != 200:
                            raise GenerationError(
                                f"ComfyUI download failed ({image_response.status_code})"
                            )
                        return image_response.content

            await self.sleep(self.poll_interval)
            if attempt and attempt % 30 == 0:
                logger.info(f"[comfyui] Still rendering {prompt_id} ({attempt} polls)")

        raise GenerationError(f"ComfyUI job {prompt_id} timed out")

    async def health_check(self) -> bool:
        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                response = await client.get(f"{self.base_url}/system_stats")
                return response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning(f"ComfyUI health check failed: {e}")
            return False
