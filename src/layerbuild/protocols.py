"""
layerbuild Protocol Definitions

Protocols are the foundation layer; the pipeline only ever talks to a runner
through `StepRunner`, so a fake runner can stand in for a container engine.
"""

from typing import Optional, Protocol, runtime_checkable

from .datacls import BaseImage, Snapshot, StepOutcome, StepSpec


@runtime_checkable
class StepRunner(Protocol):
    """
    Protocol for anything that can execute pipeline steps.

    A runner owns the filesystem snapshots it produces: it resolves the base
    snapshot, runs one step on top of a parent snapshot and reports the new
    layer id.
    """

    def resolve_base(self, base: BaseImage) -> str:
        """
        Resolve the base image to the id of its snapshot.

        Args:
            base: Base image reference

        Returns:
            Snapshot id the first step runs on
        """
        ...

    def run(self, step: StepSpec, parent: str, index: int) -> StepOutcome:
        """
        Execute one step on top of `parent` and block until it exits.

        Args:
            step: The step to execute
            parent: Id of the snapshot the step runs on
            index: Position of the step in the pipeline

        Returns:
            Exit status, captured output and, on success, the new layer id
        """
        ...

    def cancel(self) -> None:
        """Forcefully terminate the step currently running, if any."""
        ...

    def finalize(self, snapshot: Snapshot, tag: Optional[str] = None) -> None:
        """Publish a successful final snapshot, e.g. by tagging it."""
        ...
