"""
Dependency sequencer — stable topological order of a spec list.

Kahn's algorithm with a min-heap keyed by declaration index: among all
actions whose dependencies are satisfied, the one declared first runs
first. The same list always produces the same order, and a list with
no ``depends_on`` at all runs exactly as written.

Pure: no I/O, no collaborators. Every structural problem (duplicate
keys, unknown or ambiguous references, cycles) is raised as a single
ValidationError before anything executes.
"""

from __future__ import annotations

import heapq
from collections.abc import Sequence

from hostconverge.core.errors import ValidationError
from hostconverge.core.models.action import ActionSpec


def _index(specs: Sequence[ActionSpec]) -> tuple[dict[str, int], dict[str, list[int]], list[str]]:
    """Map keys and bare identities to declaration indices."""
    errors: list[str] = []
    by_key: dict[str, int] = {}
    by_identity: dict[str, list[int]] = {}
    for i, spec in enumerate(specs):
        if spec.key in by_key:
            errors.append(f"Duplicate action: {spec.key}")
            continue
        by_key[spec.key] = i
        by_identity.setdefault(spec.identity, []).append(i)
    return by_key, by_identity, errors


def resolve_dependencies(specs: Sequence[ActionSpec]) -> list[list[int]]:
    """For each spec, the declaration indices it depends on.

    A reference is either a full ``kind:identity`` key or a bare
    identity. A bare identity shared by several kinds is ambiguous.

    Raises:
        ValidationError: duplicates, unknown or ambiguous references.
    """
    by_key, by_identity, errors = _index(specs)
    deps: list[list[int]] = []
    for own, spec in enumerate(specs):
        resolved: list[int] = []
        for ref in spec.depends_on:
            # A bare identity never resolves to the spec that names it
            others = [i for i in by_identity.get(ref, []) if i != own]
            if ref in by_key:
                target = by_key[ref]
            elif len(others) == 1:
                target = others[0]
            elif others:
                candidates = ", ".join(specs[i].key for i in others)
                errors.append(f"'{spec.key}' depends on ambiguous '{ref}' (one of: {candidates})")
                continue
            elif ref == spec.identity:
                errors.append(f"'{spec.key}' depends on itself (no other action is named '{ref}')")
                continue
            else:
                errors.append(f"'{spec.key}' depends on unknown action '{ref}'")
                continue
            if target not in resolved:
                resolved.append(target)
        deps.append(resolved)

    if errors:
        raise ValidationError("Invalid dependency graph:\n  " + "\n  ".join(errors))
    return deps


def _find_cycle(remaining: set[int], deps: list[list[int]]) -> list[int]:
    """Walk dependency edges inside ``remaining`` until a node repeats."""
    node = min(remaining)
    path: list[int] = []
    seen: dict[int, int] = {}
    while node not in seen:
        seen[node] = len(path)
        path.append(node)
        node = min(d for d in deps[node] if d in remaining)
    return path[seen[node]:] + [node]


def order(specs: Sequence[ActionSpec]) -> list[ActionSpec]:
    """Return ``specs`` in dependency order, ties broken by declaration order.

    Raises:
        ValidationError: the graph is malformed or cyclic. The message
            names the members of one cycle.
    """
    deps = resolve_dependencies(specs)

    in_degree = [len(d) for d in deps]
    dependents: list[list[int]] = [[] for _ in specs]
    for i, targets in enumerate(deps):
        for t in targets:
            dependents[t].append(i)

    heap = [i for i, deg in enumerate(in_degree) if deg == 0]
    heapq.heapify(heap)
    ordered: list[int] = []
    while heap:
        node = heapq.heappop(heap)
        ordered.append(node)
        for successor in dependents[node]:
            in_degree[successor] -= 1
            if in_degree[successor] == 0:
                heapq.heappush(heap, successor)

    if len(ordered) < len(specs):
        remaining = set(range(len(specs))) - set(ordered)
        cycle = _find_cycle(remaining, deps)
        chain = " -> ".join(specs[i].key for i in cycle)
        raise ValidationError(f"Dependency cycle detected: {chain}")

    return [specs[i] for i in ordered]
