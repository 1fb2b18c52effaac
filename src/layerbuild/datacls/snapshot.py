"""
Snapshot chain

A snapshot is the base snapshot id followed by an ordered tuple of layers.
Both models are frozen, and `Snapshot.append` hands back a new snapshot, so a
layer can neither be edited nor removed once it is part of a chain.
"""
from typing import List, Tuple
from pydantic import BaseModel, ConfigDict

from .image import BaseImage
from ..exceptions import SnapshotError


class Layer(BaseModel):
    """Filesystem diff produced by exactly one pipeline step."""
    model_config = ConfigDict(frozen=True)

    digest: str
    index: int
    step: str
    parent: str
    created_by: Tuple[str, ...] = ()
    changes: Tuple[str, ...] = ()


class Snapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    base: BaseImage
    base_id: str
    layers: Tuple[Layer, ...] = ()

    @property
    def active(self) -> str:
        """Id of the newest layer, or of the base when no layer exists yet."""
        return self.layers[-1].digest if self.layers else self.base_id

    @property
    def layer_ids(self) -> List[str]:
        return [layer.digest for layer in self.layers]

    @property
    def chain(self) -> List[str]:
        return [self.base_id] + self.layer_ids

    def append(self, layer: Layer) -> "Snapshot":
        if layer.parent != self.active:
            raise SnapshotError(
                f"Layer '{layer.digest}' of step '{layer.step}' expects parent '{layer.parent}', "
                f"but the active snapshot is '{self.active}'."
            )
        if layer.index != len(self.layers):
            raise SnapshotError(
                f"Layer of step '{layer.step}' has index {layer.index}, expected {len(self.layers)}."
            )
        return self.model_copy(update={"layers": self.layers + (layer,)})

    def __len__(self) -> int:
        return len(self.layers)
