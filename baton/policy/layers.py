from dataclasses import dataclass, field, fields, replace
from enum import Enum

from baton.base_types import ResourceOverride


class LayerKind(str, Enum):
    """Policy layers, from least to most specific."""

    DEFAULT = "default"
    LABEL = "label"
    NAME = "name"


@dataclass(frozen=True)
class PolicyLayer:
    """One tier of the layered resource policy. `selector` is the label or
    task name the layer applies to; DEFAULT layers apply to every task."""

    kind: LayerKind
    override: ResourceOverride
    selector: str | None = None


@dataclass(frozen=True)
class ResourceLimits:
    """Caps applied after escalation, so retries cannot ask for more than a
    node offers."""

    cpus: int | None = None
    memory_mb: int | None = None
    walltime_seconds: int | None = None


@dataclass(frozen=True)
class PolicyLayers:
    """The full resource policy: layers in the order they were declared,
    plus limits."""

    layers: tuple[PolicyLayer, ...] = ()
    limits: ResourceLimits = field(default_factory=ResourceLimits)

    def defaults(self) -> list[ResourceOverride]:
        return [layer.override for layer in self.layers if layer.kind is LayerKind.DEFAULT]

    def for_label(self, label: str) -> list[ResourceOverride]:
        return [
            layer.override for layer in self.layers if layer.kind is LayerKind.LABEL and layer.selector == label
        ]

    def for_name(self, name: str) -> list[ResourceOverride]:
        return [
            layer.override for layer in self.layers if layer.kind is LayerKind.NAME and layer.selector == name
        ]


def merge_override(base: ResourceOverride, top: ResourceOverride) -> ResourceOverride:
    """Field-by-field merge; every field set on `top` replaces the field on
    `base`, every unset field is inherited."""

    changes = {item.name: getattr(top, item.name) for item in fields(top) if getattr(top, item.name) is not None}
    return replace(base, **changes)
