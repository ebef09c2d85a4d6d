"""Hierarchical product categories.

Each row stores ``parent_id`` plus a denormalised ``path`` (handles joined by
``/``) and ``level`` so breadcrumbs and subtree queries don't need recursion
in SQL. The tree itself is assembled in Python.
"""
from typing import Any, Dict, Iterable, List, Optional

from ..data.models import Category, ProductCategory
from ..schemas.io_models import ServiceResult
from ..utils.handles import generate_handle
from .base_service import BaseService


def build_category_tree(categories: Iterable[Category]) -> List[Dict[str, Any]]:
    """Nest flat category rows by parent_id; siblings sorted by position then name."""
    nodes: Dict[int, Dict[str, Any]] = {}
    for c in categories:
        nodes[c.id] = {
            "id": c.id,
            "name": c.name,
            "handle": c.handle,
            "parent_id": c.parent_id,
            "path": c.path,
            "level": c.level,
            "position": c.position,
            "is_active": c.is_active,
            "children": [],
        }

    roots: List[Dict[str, Any]] = []
    for node in nodes.values():
        parent = nodes.get(node["parent_id"]) if node["parent_id"] is not None else None
        if parent is None:
            # orphans (parent filtered out) are promoted to roots
            roots.append(node)
        else:
            parent["children"].append(node)

    def _sort(branch: List[Dict[str, Any]]) -> None:
        branch.sort(key=lambda n: (n["position"] or 0, n["name"].lower()))
        for n in branch:
            _sort(n["children"])

    _sort(roots)
    return roots


class CategoryService(BaseService):
    name = "categories"

    def get_tree(self, active_only: bool = False) -> List[Dict[str, Any]]:
        query = self.db.query(Category)
        if active_only:
            query = query.filter(Category.is_active.is_(True))
        return build_category_tree(query.all())

    def get_breadcrumbs(self, handle: str) -> List[Dict[str, str]]:
        category = self.db.query(Category).filter(Category.handle == handle).first()
        if category is None:
            return []
        handles = category.path.split("/")
        rows = {c.handle: c for c in self.db.query(Category).filter(Category.handle.in_(handles)).all()}
        return [{"handle": h, "name": rows[h].name} for h in handles if h in rows]

    def create_category(self, name: str, parent_id: Optional[int] = None, handle: Optional[str] = None,
                        description: Optional[str] = None, position: int = 0) -> ServiceResult:
        handle = generate_handle(handle or name)
        if not handle:
            return self._fail("Category name is required")
        if self.db.query(Category).filter(Category.handle == handle).first():
            return self._fail(f"Category with handle '{handle}' already exists", code="conflict")

        parent = None
        if parent_id is not None:
            parent = self.db.query(Category).filter(Category.id == parent_id).first()
            if parent is None:
                return self._fail("Parent category not found", code="not_found")

        category = Category(
            name=name,
            handle=handle,
            description=description,
            parent_id=parent.id if parent else None,
            path=f"{parent.path}/{handle}" if parent else handle,
            level=parent.level + 1 if parent else 0,
            position=position,
        )
        self.db.add(category)
        self._commit()
        return self._ok("Category created", id=category.id, handle=category.handle, path=category.path)

    def _descendants(self, category: Category) -> List[Category]:
        found, stack = [], list(category.children)
        while stack:
            node = stack.pop()
            found.append(node)
            stack.extend(node.children)
        return found

    def move_category(self, category_id: int, new_parent_id: Optional[int], position: Optional[int] = None) -> ServiceResult:
        category = self.db.query(Category).filter(Category.id == category_id).first()
        if category is None:
            return self._fail("Category not found", code="not_found")

        new_parent = None
        if new_parent_id is not None:
            if new_parent_id == category.id:
                return self._fail("A category cannot be its own parent")
            new_parent = self.db.query(Category).filter(Category.id == new_parent_id).first()
            if new_parent is None:
                return self._fail("Parent category not found", code="not_found")
            if new_parent.id in {d.id for d in self._descendants(category)}:
                return self._fail("Cannot move a category under its own descendant")

        category.parent_id = new_parent.id if new_parent else None
        if position is not None:
            category.position = position
        self._rebase(category, new_parent)
        self._commit()
        return self._ok("Category moved", id=category.id, path=category.path, level=category.level)

    def _rebase(self, category: Category, parent: Optional[Category]) -> None:
        category.path = f"{parent.path}/{category.handle}" if parent else category.handle
        category.level = parent.level + 1 if parent else 0
        for child in category.children:
            self._rebase(child, category)

    def update_category(self, category_id: int, **fields) -> ServiceResult:
        category = self.db.query(Category).filter(Category.id == category_id).first()
        if category is None:
            return self._fail("Category not found", code="not_found")
        for key in ("name", "description", "position", "is_active"):
            if fields.get(key) is not None:
                setattr(category, key, fields[key])
        self._commit()
        return self._ok("Category updated", id=category.id)

    def delete_category(self, category_id: int) -> ServiceResult:
        category = self.db.query(Category).filter(Category.id == category_id).first()
        if category is None:
            return self._fail("Category not found", code="not_found")
        if category.children:
            return self._fail("Category has subcategories; move or delete them first", code="conflict")
        self.db.query(ProductCategory).filter(ProductCategory.category_id == category.id).delete()
        self.db.delete(category)
        self._commit()
        return self._ok("Category deleted", id=category_id)
