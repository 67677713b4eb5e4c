"""
Static dependency analysis of notebook cells.

Every code cell is parsed (never executed) to find the names it defines
at module level and the names it reads from other cells. The resulting
graph answers the questions the server needs without running anything:

    Cell a: x = bind(Slider(1, 10))     # bond cell, defines x
    Cell b: y = x ** 2                  # references x
    Cell c: z = y + 1                   # references y

    downstream(a) -> [b]     topological_order([b]) -> [b, c]
    bond_connections() -> {"x": ["y", "z"]}
    upstream_roots([c]) -> [a]
"""

import ast
import builtins
import heapq
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from notebook_bind.errors import UnknownSymbolError

logger = logging.getLogger(__name__)

BUILTIN_NAMES = frozenset(dir(builtins))
BIND_FUNCTION = "bind"


@dataclass(frozen=True)
class BondDeclaration:
    """``name = bind(<widget>)``"""
    name: str
    widget_source: str


@dataclass(eq=False)
class CellNode:
    """Tracks what a cell defines and what it uses."""

    cell_id: str
    index: int
    definitions: frozenset = field(default_factory=frozenset)
    references: frozenset = field(default_factory=frozenset)
    bond: Optional[BondDeclaration] = None

    def __repr__(self):
        return f"CellNode({self.cell_id!r}, defines={sorted(self.definitions)})"


def _argument_names(args: ast.arguments) -> set[str]:
    names = [a.arg for a in args.posonlyargs + args.args + args.kwonlyargs]
    if args.vararg:
        names.append(args.vararg.arg)
    if args.kwarg:
        names.append(args.kwarg.arg)
    return set(names)


class _LocalNames(ast.NodeVisitor):
    """Names bound directly in a function or class body (not in nested scopes)."""

    def __init__(self):
        self.names: set[str] = set()

    def visit_Name(self, node):
        if not isinstance(node.ctx, ast.Load):
            self.names.add(node.id)

    def visit_Import(self, node):
        for alias in node.names:
            self.names.add(alias.asname or alias.name.split(".")[0])

    visit_ImportFrom = visit_Import

    def visit_FunctionDef(self, node):
        self.names.add(node.name)

    visit_AsyncFunctionDef = visit_FunctionDef
    visit_ClassDef = visit_FunctionDef

    def visit_Lambda(self, node):
        pass

    def visit_ListComp(self, node):
        pass

    visit_SetComp = visit_ListComp
    visit_DictComp = visit_ListComp
    visit_GeneratorExp = visit_ListComp


class _ScopeVisitor(ast.NodeVisitor):
    """AST visitor to extract module-level definitions and free references."""

    def __init__(self):
        self.definitions: set[str] = set()
        self.references: set[str] = set()
        self._scopes: list[set[str]] = []

    def _define(self, name: str):
        if self._scopes:
            self._scopes[-1].add(name)
        else:
            self.definitions.add(name)

    def _reference(self, name: str):
        if not any(name in scope for scope in self._scopes):
            self.references.add(name)

    def _visit_scope(self, local_names: set[str], body: Sequence[ast.AST]):
        collector = _LocalNames()
        for stmt in body:
            collector.visit(stmt)
        self._scopes.append(local_names | collector.names)
        for stmt in body:
            self.visit(stmt)
        self._scopes.pop()

    def _visit_defaults(self, args: ast.arguments):
        for default in args.defaults + [d for d in args.kw_defaults if d is not None]:
            self.visit(default)

    def visit_Name(self, node):
        if isinstance(node.ctx, ast.Load):
            self._reference(node.id)
        else:
            self._define(node.id)

    def visit_Import(self, node):
        for alias in node.names:
            self._define(alias.asname or alias.name.split(".")[0])

    def visit_ImportFrom(self, node):
        for alias in node.names:
            if alias.name != "*":
                self._define(alias.asname or alias.name)

    def visit_FunctionDef(self, node):
        for decorator in node.decorator_list:
            self.visit(decorator)
        self._visit_defaults(node.args)
        if node.returns is not None:
            self.visit(node.returns)
        self._define(node.name)
        self._visit_scope(_argument_names(node.args), node.body)

    visit_AsyncFunctionDef = visit_FunctionDef

    def visit_Lambda(self, node):
        self._visit_defaults(node.args)
        self._scopes.append(_argument_names(node.args))
        self.visit(node.body)
        self._scopes.pop()

    def visit_ClassDef(self, node):
        for expr in node.decorator_list + node.bases + [k.value for k in node.keywords]:
            self.visit(expr)
        self._define(node.name)
        self._visit_scope(set(), node.body)

    def _visit_comprehension(self, node, elements):
        # The first iterable is evaluated in the enclosing scope.
        self.visit(node.generators[0].iter)
        self._scopes.append(set())
        for i, generator in enumerate(node.generators):
            if i:
                self.visit(generator.iter)
            self.visit(generator.target)
            for condition in generator.ifs:
                self.visit(condition)
        for element in elements:
            self.visit(element)
        self._scopes.pop()

    def visit_ListComp(self, node):
        self._visit_comprehension(node, [node.elt])

    visit_SetComp = visit_ListComp
    visit_GeneratorExp = visit_ListComp

    def visit_DictComp(self, node):
        self._visit_comprehension(node, [node.key, node.value])


def _bond_declaration(source: str, tree: ast.Module) -> Optional[BondDeclaration]:
    if len(tree.body) != 1 or not isinstance(tree.body[0], ast.Assign):
        return None
    stmt = tree.body[0]
    if len(stmt.targets) != 1 or not isinstance(stmt.targets[0], ast.Name):
        return None
    call = stmt.value
    if not isinstance(call, ast.Call) or len(call.args) != 1 or call.keywords:
        return None
    func = call.func
    name = func.id if isinstance(func, ast.Name) else getattr(func, "attr", None)
    if name != BIND_FUNCTION:
        return None
    return BondDeclaration(
        name=stmt.targets[0].id,
        widget_source=ast.get_source_segment(source, call.args[0]),
    )


def analyze_cell(cell_id: str, index: int, source: str) -> CellNode:
    """
    Parse a cell's source code and extract dependencies.

    Args:
        cell_id: Cell identifier
        index: Cell position among the notebook's code cells
        source: Python source code

    Returns:
        CellNode with definitions/references sets
    """
    try:
        tree = ast.parse(source)
    except SyntaxError as e:
        logger.warning("Syntax error in cell %s: %s", cell_id, e)
        return CellNode(cell_id=cell_id, index=index)

    visitor = _ScopeVisitor()
    visitor.visit(tree)
    references = visitor.references - visitor.definitions - BUILTIN_NAMES

    return CellNode(
        cell_id=cell_id,
        index=index,
        definitions=frozenset(visitor.definitions),
        references=frozenset(references),
        bond=_bond_declaration(source, tree),
    )


def _by_index(nodes: Iterable[CellNode]) -> list[CellNode]:
    return sorted(nodes, key=lambda n: n.index)


class NotebookTopology:
    """Dependency graph over a notebook's code cells."""

    def __init__(self, nodes: Sequence[CellNode]):
        self.nodes = _by_index(nodes)
        self._by_id = {node.cell_id: node for node in self.nodes}

    @classmethod
    def from_notebook(cls, notebook) -> "NotebookTopology":
        return cls([
            analyze_cell(cell.id, i, cell.source)
            for i, cell in enumerate(notebook.code_cells())
        ])

    def __contains__(self, cell_id: str) -> bool:
        return cell_id in self._by_id

    def node(self, cell_id: str) -> CellNode:
        return self._by_id[cell_id]

    @property
    def defined_names(self) -> set[str]:
        return set().union(*(node.definitions for node in self.nodes))

    @property
    def bound_variables(self) -> list[str]:
        """Bound variable names in notebook order."""
        return [node.bond.name for node in self.nodes if node.bond is not None]

    def bond_cell(self, name: str) -> Optional[CellNode]:
        for node in self.nodes:
            if node.bond is not None and node.bond.name == name:
                return node
        return None

    def where_assigned(self, names: Iterable[str]) -> list[CellNode]:
        """Cells defining any of ``names``, in notebook order."""
        names = set(names)
        return [node for node in self.nodes if node.definitions & names]

    def where_referenced(self, names: Iterable[str]) -> list[CellNode]:
        """Cells reading any of ``names``, in notebook order."""
        names = set(names)
        return [node for node in self.nodes if node.references & names]

    def first_definers(self, names: Iterable[str]) -> list[CellNode]:
        """
        The defining cell of every name; the first definer wins when a
        name is assigned in several cells.

        Raises:
            UnknownSymbolError: if any name is not defined by a cell
        """
        names = list(dict.fromkeys(names))
        unknown = [name for name in names if not self.where_assigned([name])]
        if unknown:
            raise UnknownSymbolError(unknown)
        found = {}
        for name in names:
            node = self.where_assigned([name])[0]
            found[node.cell_id] = node
        return _by_index(found.values())

    def upstream(self, node: CellNode) -> list[CellNode]:
        return [n for n in self.where_assigned(node.references) if n is not node]

    def downstream(self, node: CellNode) -> list[CellNode]:
        return [n for n in self.where_referenced(node.definitions) if n is not node]

    def topological_order(self, roots: Iterable[CellNode]) -> list[CellNode]:
        """
        ``roots`` plus every cell that transitively depends on them, in an
        order where each cell comes after the cells it reads from. Ties are
        broken by notebook order, so the result is deterministic.
        """
        selected: dict[str, CellNode] = {}
        stack = list(roots)
        while stack:
            node = stack.pop()
            if node.cell_id in selected:
                continue
            selected[node.cell_id] = node
            stack.extend(self.downstream(node))

        pending = {
            cell_id: {u.cell_id for u in self.upstream(node) if u.cell_id in selected}
            for cell_id, node in selected.items()
        }
        ready = [(node.index, cell_id) for cell_id, node in selected.items() if not pending[cell_id]]
        heapq.heapify(ready)

        order: list[CellNode] = []
        done: set[str] = set()
        while ready:
            _, cell_id = heapq.heappop(ready)
            if cell_id in done:
                continue
            done.add(cell_id)
            node = selected[cell_id]
            order.append(node)
            for child in self.downstream(node):
                if child.cell_id not in selected or child.cell_id in done:
                    continue
                pending[child.cell_id].discard(cell_id)
                if not pending[child.cell_id]:
                    heapq.heappush(ready, (child.index, child.cell_id))

        leftover = [node for node in _by_index(selected.values()) if node.cell_id not in done]
        if leftover:
            logger.warning(
                "Cyclic references between cells %s; running them in notebook order",
                [node.cell_id for node in leftover],
            )
            order.extend(leftover)
        return order

    def bond_connections(self) -> dict[str, list[str]]:
        """
        For every bound variable, the variables it can affect: everything
        defined by cells that read it, directly or through other cells.
        """
        connections = {}
        for name in self.bound_variables:
            affected: set[str] = set()
            for node in self.topological_order(self.where_referenced([name])):
                affected |= node.definitions
            connections[name] = sorted(affected)
        return connections

    def upstream_roots(self, nodes: Iterable[CellNode]) -> list[CellNode]:
        """
        Walk backwards from ``nodes`` to the cells that read nothing from
        other cells. Bond cells count as roots: their value comes from
        the client, not from upstream cells.
        """
        roots: dict[str, CellNode] = {}
        seen: set[str] = set()
        stack = list(nodes)
        while stack:
            node = stack.pop()
            if node.cell_id in seen:
                continue
            seen.add(node.cell_id)
            parents = [] if node.bond is not None else self.upstream(node)
            if parents:
                stack.extend(parents)
            else:
                roots[node.cell_id] = node
        return _by_index(roots.values())

    def root_variables(self, output_names: Iterable[str]) -> set[str]:
        """All variables defined by the upstream roots of ``output_names``."""
        roots = self.upstream_roots(self.first_definers(output_names))
        return set().union(*(node.definitions for node in roots))
