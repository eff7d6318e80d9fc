"""Filesystem storage for input images and generated results."""

from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from uuid import uuid4

from product_studio.providers.base import GeneratedImage, ProviderError
from product_studio.providers.http import AsyncHttpClient

logger = logging.getLogger(__name__)

_EXTENSIONS = {"image/png": ".png", "image/jpeg": ".jpg", "image/webp": ".webp"}
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


class ImageStore:
    """Resolves stored image paths and writes generated images under one root."""

    def __init__(
        self,
        root: Path,
        *,
        result_dir: str = "results",
        http: AsyncHttpClient | None = None,
    ) -> None:
        self.root = root
        self.result_dir = result_dir
        self._http = http

    def resolve(self, path: str) -> Path:
        candidate = Path(path)
        return candidate if candidate.is_absolute() else self.root / candidate

    def read_bytes(self, path: str) -> bytes:
        resolved = self.resolve(path)
        if not resolved.is_file():
            raise FileNotFoundError(f"Image not found: {resolved}")
        return resolved.read_bytes()

    async def load(self, path: str) -> bytes:
        """`read_bytes` on a worker thread, for use inside the event loop."""

        return await asyncio.to_thread(self.read_bytes, path)

    def save_result(
        self,
        task_id: str,
        data: bytes,
        *,
        model_id: str,
        mime_type: str = "image/png",
    ) -> str:
        """Write one generated image and return its path relative to the root."""

        extension = _EXTENSIONS.get(mime_type, ".png")
        name = f"{_safe(task_id)}-{_safe(model_id)}-{uuid4().hex[:8]}{extension}"
        relative = Path(self.result_dir) / name
        target = self.root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        logger.debug("Saved result image %s (%d bytes)", target, len(data))
        return relative.as_posix()

    async def save_generated(self, task_id: str, image: GeneratedImage, *, model_id: str) -> str:
        """Persist inline bytes, or download the image URL first."""

        if image.data is not None:
            return await asyncio.to_thread(
                self.save_result,
                task_id,
                image.data,
                model_id=model_id,
                mime_type=image.mime_type,
            )
        if image.url is None:
            raise ProviderError(image.call.provider, "image has neither data nor url")
        if self._http is None:
            raise ProviderError(image.call.provider, "no HTTP client configured to download image")
        data = await self._http.get_bytes(image.url, provider=image.call.provider)
        return await asyncio.to_thread(
            self.save_result,
            task_id,
            data,
            model_id=model_id,
            mime_type=image.mime_type,
        )


def _safe(value: str) -> str:
    return _UNSAFE_CHARS.sub("_", value)
