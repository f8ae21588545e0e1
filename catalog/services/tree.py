"""Traversals over the category adjacency map.

The tree is never walked through ORM relationships. Callers load a flat
``{category_id: parent_id}`` map (see ``CategoryStore.parent_map``) and the helpers
here walk it with explicit bounds, so corrupted data (a parent chain that loops)
ends the walk instead of hanging it.
"""

from collections import defaultdict
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

ParentMap = Mapping[int, Optional[int]]


class CycleDetected(Exception):
    """Raised when a walk revisits a node or runs past the number of categories."""

    def __init__(self, node_id: Optional[int]):
        super().__init__(f"cycle detected at category {node_id}")
        self.node_id = node_id


def children_index(parent_map: ParentMap) -> Dict[Optional[int], List[int]]:
    index: Dict[Optional[int], List[int]] = defaultdict(list)
    for node_id, parent_id in parent_map.items():
        index[parent_id].append(node_id)
    return index


def ancestor_chain(
    parent_map: ParentMap,
    start_id: Optional[int],
    *,
    seen: Iterable[int] = (),
) -> List[int]:
    """Return ``start_id`` followed by its ancestors, nearest first.

    ``seen`` seeds the visited set: reaching any of those ids counts as a cycle.
    Ids missing from the map end the walk, like a null parent.
    """
    visited: Set[int] = set(seen)
    bound = len(parent_map)
    chain: List[int] = []
    current = start_id
    while current is not None:
        if current in visited or len(chain) > bound:
            raise CycleDetected(current)
        visited.add(current)
        chain.append(current)
        current = parent_map.get(current)
    return chain


def descendant_ids(parent_map: ParentMap, root_id: int) -> Set[int]:
    """Collect every transitive child of ``root_id`` (children of children, ...)."""
    index = children_index(parent_map)
    bound = len(parent_map)
    found: Set[int] = set()
    pending = list(index.get(root_id, []))
    while pending:
        node_id = pending.pop()
        if node_id == root_id or node_id in found or len(found) >= bound:
            raise CycleDetected(node_id)
        found.add(node_id)
        pending.extend(index.get(node_id, []))
    return found


def ordered_tree(nodes: Iterable[Dict[str, Any]], *, sort_key=None) -> List[Dict[str, Any]]:
    """Flatten node dicts into depth-first order, annotating each with ``depth``.

    Nodes need ``id`` and ``parent_id``. Nodes whose parent is not among ``nodes``
    (hidden or missing) are treated as roots, and nodes caught in a loop are still
    emitted once so nothing silently disappears from admin listings.
    """
    sort_key = sort_key or (lambda item: item["name"].lower())
    node_list = list(nodes)
    known = {node["id"] for node in node_list}
    children_map: Dict[Optional[int], List[Dict[str, Any]]] = defaultdict(list)
    for node in node_list:
        parent_id = node["parent_id"] if node["parent_id"] in known else None
        children_map[parent_id].append(node)

    for siblings in children_map.values():
        siblings.sort(key=sort_key)

    ordered: List[Dict[str, Any]] = []
    visited: Set[int] = set()

    def _visit(node: Dict[str, Any], depth: int) -> None:
        if node["id"] in visited:
            return
        node["depth"] = depth
        ordered.append(node)
        visited.add(node["id"])
        for child in children_map.get(node["id"], []):
            _visit(child, depth + 1)

    for root in children_map.get(None, []):
        _visit(root, 0)

    for node in sorted(node_list, key=sort_key):
        if node["id"] not in visited:
            _visit(node, 0)

    return ordered


def nest(ordered: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Turn the output of ``ordered_tree`` into nested ``children`` lists."""
    roots: List[Dict[str, Any]] = []
    stack: List[Dict[str, Any]] = []
    for node in ordered:
        node["children"] = []
        while stack and stack[-1]["depth"] >= node["depth"]:
            stack.pop()
        if stack:
            stack[-1]["children"].append(node)
        else:
            roots.append(node)
        stack.append(node)
    return roots
