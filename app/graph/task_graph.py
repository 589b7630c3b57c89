from collections import defaultdict
from typing import Dict, Iterable, List, Sequence, Set

from app.models.entities import Task


def build_co_run_graph(groups: Iterable[Sequence[str]], known: Set[str]) -> Dict[str, Set[str]]:
    """Undirected graph linking every pair of known tasks that share a co-run group."""
    graph: Dict[str, Set[str]] = defaultdict(set)
    for group in groups:
        members = [tid for tid in group if tid in known]
        for i, t1 in enumerate(members):
            for t2 in members[i + 1 :]:
                if t1 != t2:
                    graph[t1].add(t2)
                    graph[t2].add(t1)
    return graph


def connected_components(graph: Dict[str, Set[str]], order: Sequence[str]) -> List[List[str]]:
    """Components of size > 1, each listed (and discovered) in the given order."""
    rank = {tid: i for i, tid in enumerate(order)}
    seen: Set[str] = set()
    components: List[List[str]] = []
    for start in order:
        if start in seen or start not in graph:
            continue
        stack = [start]
        component = []
        seen.add(start)
        while stack:
            node = stack.pop()
            component.append(node)
            for nxt in graph[node]:
                if nxt not in seen:
                    seen.add(nxt)
                    stack.append(nxt)
        if len(component) > 1:
            components.append(sorted(component, key=lambda t: rank.get(t, len(rank))))
    return components


def find_dependency_cycles(tasks: Sequence[Task]) -> List[List[str]]:
    """
    Return the groups of tasks that depend on each other circularly.

    Each group is a strongly connected component of the dependency graph
    (iterative Tarjan) with more than one task, or a single task depending
    on itself. Groups and their members follow input order. Unknown
    dependency ids are ignored here (the validator reports them separately).
    """
    deps: Dict[str, List[str]] = {}
    for t in tasks:
        if t.task_id and t.task_id not in deps:
            deps[t.task_id] = [d for d in t.dependencies]
    position = {tid: i for i, tid in enumerate(deps)}

    index: Dict[str, int] = {}
    lowlink: Dict[str, int] = {}
    on_stack: Set[str] = set()
    stack: List[str] = []
    components: List[List[str]] = []

    for root in deps:
        if root in index:
            continue
        index[root] = lowlink[root] = len(index)
        stack.append(root)
        on_stack.add(root)
        work = [(root, iter(deps[root]))]
        while work:
            node, children = work[-1]
            child = next(children, None)
            if child is not None:
                if child not in deps:
                    continue
                if child not in index:
                    index[child] = lowlink[child] = len(index)
                    stack.append(child)
                    on_stack.add(child)
                    work.append((child, iter(deps[child])))
                elif child in on_stack:
                    lowlink[node] = min(lowlink[node], index[child])
                continue

            work.pop()
            if work:
                parent = work[-1][0]
                lowlink[parent] = min(lowlink[parent], lowlink[node])
            if lowlink[node] != index[node]:
                continue
            component = []
            while True:
                member = stack.pop()
                on_stack.discard(member)
                component.append(member)
                if member == node:
                    break
            if len(component) > 1 or node in deps[node]:
                components.append(sorted(component, key=position.get))

    return sorted(components, key=lambda c: position[c[0]])
