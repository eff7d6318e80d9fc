"""Generation pipeline: task state machine, batch orchestration and cost ledger.

A task walks four ordered stages (reference analysis, content analysis,
prompt synthesis, image generation). Each stage persists its output before
the next one reads it, so a failed task can be resumed at the stage that
failed without paying again for earlier calls.

Work is queued in SQLite and picked up either by `worker.PipelineWorker`
(claim, run, release) or in-process through `dispatch.BackgroundDispatcher`.
A separate broker would add an operational dependency for a single-machine
tool whose hard parts are stage checkpointing and shared batch analysis,
neither of which a generic queue provides.
"""
