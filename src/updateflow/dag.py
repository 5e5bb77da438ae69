# dag.py
from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import CyclicDependency, DuplicateStep, UnknownDependency
from .model import Step


@dataclass(frozen=True)
class Wave:
    """A batch of steps whose dependencies all live in earlier waves."""
    index: int
    step_ids: Tuple[str, ...]

    def __len__(self) -> int:
        return len(self.step_ids)

    def __iter__(self):
        return iter(self.step_ids)


def build_dag(steps: Sequence[Step]) -> Tuple[Dict[str, List[str]], Dict[str, int]]:
    """
    Build a DAG from Step objects.

    Returns (adj, indeg) where adj maps a step id to the ids that need it
    (dependents, in input order) and indeg counts each step's distinct needs.

    Raises:
        DuplicateStep: two steps share an id
        UnknownDependency: a step needs an id that is not in `steps`
    """
    ids = [s.id for s in steps]
    if len(set(ids)) != len(ids):
        seen, dupes = set(), []
        for i in ids:
            if i in seen and i not in dupes:
                dupes.append(i)
            seen.add(i)
        raise DuplicateStep(dupes)

    known = set(ids)
    adj: Dict[str, List[str]] = {i: [] for i in ids}
    indeg: Dict[str, int] = {i: 0 for i in ids}

    for step in steps:
        for dep in step.needs:
            if dep not in known:
                raise UnknownDependency(step.id, dep, sorted(known))
            # edge dep -> step (dep must run before step)
            if step.id not in adj[dep]:
                adj[dep].append(step.id)
                indeg[step.id] += 1

    return adj, indeg


def find_cycle(adj: Dict[str, List[str]]) -> Optional[List[str]]:
    """
    Depth-first search with a recursion-stack marker.

    Returns the ids on the first cycle found (first id repeated at the end),
    or None when the graph is acyclic. Iterative so deep chains don't hit
    the interpreter recursion limit.
    """
    WHITE, GREY, BLACK = 0, 1, 2
    color = {n: WHITE for n in adj}

    for root in adj:
        if color[root] != WHITE:
            continue
        path: List[str] = [root]
        stack = [iter(adj[root])]
        color[root] = GREY

        while stack:
            child = next(stack[-1], None)
            if child is None:
                color[path.pop()] = BLACK
                stack.pop()
                continue
            if color[child] == GREY:
                start = path.index(child)
                return path[start:] + [child]
            if color[child] == WHITE:
                color[child] = GREY
                path.append(child)
                stack.append(iter(adj[child]))

    return None


def build_waves(steps: Sequence[Step]) -> List[Wave]:
    """
    Partition steps into waves.

    wave(step) = 0 without needs, else 1 + max(wave(dep) for dep in needs),
    so every step lands in the earliest wave its dependencies allow.
    Within a wave, steps keep the caller's input order.

    Raises:
        DuplicateStep, UnknownDependency, CyclicDependency
    """
    steps = list(steps)
    adj, indeg = build_dag(steps)

    cycle = find_cycle(adj)
    if cycle:
        raise CyclicDependency(cycle)

    # Kahn's algorithm + longest path relaxation
    indeg = dict(indeg)
    level: Dict[str, int] = {s.id: 0 for s in steps}
    q = deque(s.id for s in steps if indeg[s.id] == 0)

    while q:
        node = q.popleft()
        for child in adj[node]:
            level[child] = max(level[child], level[node] + 1)
            indeg[child] -= 1
            if indeg[child] == 0:
                q.append(child)

    buckets: Dict[int, List[str]] = {}
    for s in steps:
        buckets.setdefault(level[s.id], []).append(s.id)

    return [Wave(index=i, step_ids=tuple(buckets[i])) for i in sorted(buckets)]


def wave_index(waves: Iterable[Wave]) -> Dict[str, int]:
    """step id -> wave index"""
    return {sid: w.index for w in waves for sid in w.step_ids}


def describe_waves(waves: Sequence[Wave]) -> List[str]:
    return [f"Wave {w.index}: {', '.join(w.step_ids)}" for w in waves]
