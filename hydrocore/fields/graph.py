"""Dependency graph checks for evaluators."""

from collections import deque
from typing import Iterable, Mapping

from hydrocore.errors import ConfigurationError


def topological_order(dependencies: Mapping[str, Iterable[str]]) -> list[str]:
    """Order keys so that every key follows its dependencies.

    Args:
        dependencies: key -> keys it depends on. Every dependency must
            itself be a key of the mapping.

    Returns:
        Keys, dependencies first

    Raises:
        ConfigurationError: If a dependency is unknown or the graph has a cycle
    """
    deps = {key: set(values) for key, values in dependencies.items()}
    for key, values in deps.items():
        missing = sorted(v for v in values if v not in deps)
        if missing:
            raise ConfigurationError(f"'{key}' depends on {missing}, which no evaluator provides")

    dependents: dict[str, list[str]] = {key: [] for key in deps}
    for key, values in deps.items():
        for v in values:
            dependents[v].append(key)

    remaining = {key: len(values) for key, values in deps.items()}
    ready = deque(sorted(key for key, n in remaining.items() if n == 0))
    order = []
    while ready:
        key = ready.popleft()
        order.append(key)
        for d in sorted(dependents[key]):
            remaining[d] -= 1
            if remaining[d] == 0:
                ready.append(d)

    if len(order) != len(deps):
        cyclic = sorted(key for key, n in remaining.items() if n > 0)
        raise ConfigurationError(f"Dependency cycle among {cyclic}")
    return order
