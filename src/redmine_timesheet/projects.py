"""Two-level project hierarchy used for project pickers and chart grouping."""

import json
from typing import Iterable, List, Optional, Union

from pydantic import TypeAdapter

from .models import Project

ACTIVE = 1

_project_list = TypeAdapter(List[Project])


def build_project_tree(projects: Iterable[Project]) -> List[Project]:
    """Group active projects under their top-level parents.

    Only one level of nesting is produced: a project whose parent is itself a
    child does not appear in the result at all. Input order is kept for both
    the top-level nodes and their children. The input objects are not
    modified.
    """
    active = [p for p in projects if p.status == ACTIVE]
    tree = []
    for project in active:
        if project.parent is not None and project.parent.id:
            continue
        children = [
            p for p in active if p.parent is not None and p.parent.id == project.id
        ]
        tree.append(project.model_copy(update={"children": children}))
    return tree


def find_top_level_project(
    tree: Iterable[Project], project_id: int
) -> Optional[Project]:
    """Return the top-level node that is, or directly contains, ``project_id``."""
    for project in tree:
        if project.id == project_id:
            return project
        for child in project.children or []:
            if child.id == project_id:
                return project
    return None


def dump_project_tree(tree: List[Project]) -> str:
    """Serialize a tree for storage on a connection record."""
    return json.dumps(_project_list.dump_python(tree, mode="json", exclude_none=True))


def load_project_tree(raw: Union[str, list, None]) -> List[Project]:
    """Inverse of :func:`dump_project_tree`. An empty cache loads as ``[]``."""
    if not raw:
        return []
    if isinstance(raw, str):
        return _project_list.validate_json(raw)
    return _project_list.validate_python(raw)
