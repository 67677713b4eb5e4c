"""
Structural diff between two state trees.

Patches are plain dicts so they can be packed as-is::

    {"op": "replace", "path": ["cell_results", "c2", "outputs"], "value": [...]}
    {"op": "add",     "path": ["bonds", "x"], "value": {"value": 3}}
    {"op": "remove",  "path": ["cell_results", "c9"]}

Mappings are compared key by key; any other value (lists included) is
replaced whole when it differs.
"""

import copy
from typing import Any, Iterable, Mapping


def _same(old: Any, new: Any) -> bool:
    # 1 == 1.0 == True, but those must still produce a patch.
    return type(old) is type(new) and old == new


def diff(old: Any, new: Any, path: tuple = ()) -> list[dict]:
    """
    Compute the patches turning ``old`` into ``new``.

    Args:
        old: Base tree
        new: Target tree
        path: Prefix for every emitted path

    Returns:
        Ordered list of patches; empty when the trees are equal
    """
    if isinstance(old, Mapping) and isinstance(new, Mapping):
        patches = []
        for key in old:
            if key not in new:
                patches.append({"op": "remove", "path": [*path, key]})
        for key, value in new.items():
            if key not in old:
                patches.append({"op": "add", "path": [*path, key], "value": value})
            else:
                patches.extend(diff(old[key], value, (*path, key)))
        return patches

    if _same(old, new):
        return []
    return [{"op": "replace", "path": list(path), "value": new}]


def apply_patches(value: Any, patches: Iterable[dict]) -> Any:
    """
    Apply ``patches`` to a copy of ``value`` and return the copy.

    Raises:
        KeyError: if a patch path does not exist in the tree
        ValueError: for an unknown operation
    """
    result = copy.deepcopy(value)
    for patch in patches:
        op, path = patch["op"], list(patch["path"])
        if not path:
            if op == "remove":
                result = None
            else:
                result = copy.deepcopy(patch["value"])
            continue

        parent = result
        for key in path[:-1]:
            parent = parent[key]
        key = path[-1]

        if op in ("add", "replace"):
            if op == "replace" and key not in parent:
                raise KeyError(key)
            parent[key] = copy.deepcopy(patch["value"])
        elif op == "remove":
            del parent[key]
        else:
            raise ValueError(f"Unknown patch operation: {op}")
    return result
