from baton.graph.load import load_graph, parse_override, topological_order
from baton.graph.ready import blocked_by_failure, descendants, ready_tasks

__all__ = [
    "blocked_by_failure",
    "descendants",
    "load_graph",
    "parse_override",
    "ready_tasks",
    "topological_order",
]
