"""Composition root: wires repository, providers and engines from settings."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from types import TracebackType

from product_studio.config import Settings
from product_studio.pipeline.batch import BatchOrchestrator
from product_studio.pipeline.catalog import ImageModelSpec, build_image_catalog
from product_studio.pipeline.executor import StepExecutor
from product_studio.pipeline.ledger import CostLedger
from product_studio.pipeline.models import BatchTaskView, TaskView
from product_studio.pipeline.repository import PipelineRepository
from product_studio.pipeline.state_machine import TaskStateMachine, default_start_stage
from product_studio.pipeline.submission import SubmissionService
from product_studio.providers.registry import ProviderRegistry, build_providers
from product_studio.storage.images import ImageStore

logger = logging.getLogger(__name__)


class PipelineRuntime:
    """Owns one wired pipeline; close it to release provider connections."""

    def __init__(
        self,
        *,
        settings: Settings,
        repository: PipelineRepository,
        providers: ProviderRegistry,
        images: ImageStore | None = None,
        catalog: dict[str, ImageModelSpec] | None = None,
    ) -> None:
        self.settings = settings
        self.repository = repository
        self.providers = providers
        self.catalog = catalog if catalog is not None else build_image_catalog(settings)
        self.images = images or ImageStore(
            settings.storage.image_root,
            result_dir=settings.storage.result_dir,
            http=providers.http,
        )
        self.ledger = CostLedger(
            repository,
            cost_lookup=providers.cost_lookup,
            conversion_rate=settings.cost.metered_to_fixed_rate,
        )
        self.executor = StepExecutor(providers, self.images, self.catalog)
        self.state_machine = TaskStateMachine(
            repository,
            self.executor,
            self.ledger,
            catalog=self.catalog,
            max_images_per_task=settings.pipeline.max_images_per_task,
            max_selected_models=settings.pipeline.max_selected_models,
        )
        self.orchestrator = BatchOrchestrator(
            repository,
            self.state_machine,
            self.executor,
            self.ledger,
            concurrency=settings.pipeline.batch_concurrency,
        )
        self.submissions = SubmissionService(
            repository=repository,
            images=self.images,
            catalog=self.catalog,
            settings=settings,
        )

    @classmethod
    def build(cls, settings: Settings, repository: PipelineRepository) -> PipelineRuntime:
        return cls(
            settings=settings,
            repository=repository,
            providers=build_providers(settings),
        )

    async def run_task(self, task_id: str, start_stage: int | None = None) -> TaskView:
        task = self.repository.require_task(task_id)
        stage = start_stage if start_stage is not None else default_start_stage(task)
        view = await self.state_machine.run(task_id, stage)
        self._refresh_batch(view)
        return view

    async def retry_task(self, task_id: str) -> TaskView:
        view = await self.state_machine.resume(task_id)
        self._refresh_batch(view)
        return view

    async def regenerate(self, task_id: str, models: Sequence[str]) -> TaskView:
        view = await self.state_machine.regenerate(task_id, models)
        self._refresh_batch(view)
        return view

    async def run_batch(self, batch_id: str, *, owner: str | None = None) -> BatchTaskView:
        return await self.orchestrator.run(batch_id, owner=owner)

    async def retry_batch(self, batch_id: str, *, owner: str | None = None) -> BatchTaskView:
        return await self.orchestrator.retry_failed(batch_id, owner=owner)

    async def aclose(self) -> None:
        await self.providers.aclose()

    async def __aenter__(self) -> PipelineRuntime:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    def _refresh_batch(self, view: TaskView) -> None:
        # a child driven on its own still moves the parent aggregate
        if view.batch_id is not None:
            self.repository.recompute_batch_aggregate(view.batch_id)
