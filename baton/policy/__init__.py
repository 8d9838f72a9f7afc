from baton.policy.layers import LayerKind, PolicyLayer, PolicyLayers, ResourceLimits, merge_override
from baton.policy.resolve import effective_override, resolve, resolve_retry

__all__ = [
    "LayerKind",
    "PolicyLayer",
    "PolicyLayers",
    "ResourceLimits",
    "effective_override",
    "merge_override",
    "resolve",
    "resolve_retry",
]
