from __future__ import annotations

import asyncio
import threading
from pathlib import Path

import allure
import pytest

from product_studio.pipeline.models import TaskStatus
from product_studio.providers.base import GeneratedImage, ProviderCall
from product_studio.storage.images import ImageStore

pytestmark = [
    allure.epic("Persistence"),
    allure.feature("Image Store"),
]


def test_load_reads_relative_paths_on_a_worker_thread(tmp_path: Path) -> None:
    store = ImageStore(tmp_path)
    (tmp_path / "product.png").write_bytes(b"png-bytes")
    readers: list[int] = []
    original = store.read_bytes

    def tracked(path: str) -> bytes:
        readers.append(threading.get_ident())
        return original(path)

    store.read_bytes = tracked  # type: ignore[method-assign]

    data = asyncio.run(store.load("product.png"))

    assert data == b"png-bytes"
    assert readers
    assert threading.get_ident() not in readers


def test_load_missing_image_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError, match="Image not found"):
        asyncio.run(ImageStore(tmp_path).load("missing.png"))


def test_save_generated_writes_inline_bytes_under_results(tmp_path: Path) -> None:
    store = ImageStore(tmp_path)
    image = GeneratedImage(
        call=ProviderCall(provider="jimeng", model="seedream"),
        data=b"jpeg-bytes",
        mime_type="image/jpeg",
    )

    relative = asyncio.run(store.save_generated("task/1", image, model_id="jimeng:seedream"))

    assert relative.startswith("results/task_1-jimeng_seedream-")
    assert relative.endswith(".jpg")
    assert (tmp_path / relative).read_bytes() == b"jpeg-bytes"


def test_pipeline_image_reads_stay_off_the_event_loop_thread(
    studio,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    task = studio.reference_task()
    readers: list[int] = []
    original = ImageStore.read_bytes

    def tracked(self: ImageStore, path: str) -> bytes:
        readers.append(threading.get_ident())
        return original(self, path)

    monkeypatch.setattr(ImageStore, "read_bytes", tracked)

    view = asyncio.run(studio.runtime.run_task(task.task_id))

    assert view.status == TaskStatus.COMPLETED
    assert len(readers) >= 3
    assert threading.get_ident() not in readers
