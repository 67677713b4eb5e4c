"""
LiveNotebook: a notebook loaded into its own kernel and kept running.

This is the reactive layer between the static topology and the kernel:
it runs cells in dependency order, feeds bound variables from the
client, and renders the whole execution state as a plain tree.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from notebook_bind.errors import DecodeError, EvaluationError
from notebook_bind.kernel import NotebookKernel
from notebook_bind.notebook import CellType, Notebook
from notebook_bind.topology import CellNode, NotebookTopology
from notebook_bind.widgets import initial_value, transform_value

logger = logging.getLogger(__name__)


@dataclass
class TopologicalOrder:
    """Cells that ran during one update, in the order they ran."""
    runnable: list[CellNode] = field(default_factory=list)

    @property
    def cell_ids(self) -> list[str]:
        return [node.cell_id for node in self.runnable]


class DeleteDefinitions:
    """
    Default run policy: before cells re-run, forget what they defined
    last time so no stale value survives a changed cell.
    """

    def before_run(self, live: "LiveNotebook", to_delete: set[str]):
        live.delete_variables(to_delete)

    def should_run(self, node: CellNode) -> bool:
        return True


class OverrideBindings(DeleteDefinitions):
    """
    Run policy that pins variables to caller-supplied literal values.

    Every name in ``root`` is deleted, then each ``provided`` value is
    injected in place of its cell's normal computation; cells whose
    definitions are all provided are skipped.
    """

    def __init__(self, root: Iterable[str], provided: Mapping[str, Any]):
        self.root = set(root)
        self.provided = dict(provided)

    def before_run(self, live: "LiveNotebook", to_delete: set[str]):
        super().before_run(live, to_delete | self.root)
        for name, value in self.provided.items():
            live.inject(name, value)

    def should_run(self, node: CellNode) -> bool:
        return not (node.definitions and node.definitions <= set(self.provided))


class LiveNotebook:
    """
    A notebook with a dedicated kernel, its bond values and cell results.

    One instance is the engine-owned live state of one session; nothing
    here is shared between instances.
    """

    def __init__(self, notebook: Notebook, kernel: Optional[NotebookKernel] = None):
        self.notebook = notebook
        self.kernel = kernel or NotebookKernel()
        self.topology = NotebookTopology.from_notebook(notebook)
        self.bonds: dict[str, dict[str, Any]] = {}
        self.widgets: dict[str, Any] = {}
        self.cell_results: dict[str, dict[str, Any]] = {}
        for cell in notebook.cells:
            self.cell_results[cell.id] = self._initial_result(cell)

    @staticmethod
    def _initial_result(cell) -> dict[str, Any]:
        outputs = []
        if cell.type == CellType.MARKDOWN:
            outputs = [{"type": "display_data", "data": {"text/markdown": cell.source}}]
        return {
            "cell_id": cell.id,
            "queued": cell.type == CellType.CODE,
            "errored": False,
            "outputs": outputs,
        }

    @property
    def name(self) -> str:
        return self.notebook.name

    @staticmethod
    def _coerce(name: str, widget: Any, raw: Any) -> Any:
        try:
            return transform_value(widget, raw)
        except (TypeError, ValueError) as e:
            raise DecodeError(f"Invalid value for bond {name!r}: {e}") from e

    def _bond_value(self, name: str, widget: Any) -> Any:
        if name in self.bonds:
            return self._coerce(name, widget, self.bonds[name]["value"])
        return initial_value(widget)

    def _run_cell(self, node: CellNode):
        cell = self.notebook.get_cell_by_id(node.cell_id)
        filename = f"<cell {node.cell_id}>"
        if node.bond is not None:
            result = self.kernel.execute_cell(node.bond.widget_source, filename=filename)
            if result.success:
                widget = result.return_value
                self.widgets[node.bond.name] = widget
                self.kernel.set_variable(node.bond.name, self._bond_value(node.bond.name, widget))
        else:
            result = self.kernel.execute_cell(cell.source, filename=filename)

        cell.outputs = result.outputs
        cell.execution_count = result.execution_count
        self.cell_results[node.cell_id] = {
            "cell_id": node.cell_id,
            "queued": False,
            "errored": not result.success,
            "outputs": result.outputs,
        }
        if not result.success:
            logger.error("Cell %s failed: %s", node.cell_id, result.error)
            raise EvaluationError(
                f"Cell {node.cell_id} failed: {result.error}", cell_id=node.cell_id
            )

    def run_cells(self, nodes: Iterable[CellNode], policy: Optional[DeleteDefinitions] = None) -> TopologicalOrder:
        """
        Run ``nodes`` and everything downstream of them in dependency order.

        Args:
            nodes: Cells that must re-run
            policy: Hook deciding what gets deleted/injected first and
                which cells are skipped; defaults to DeleteDefinitions

        Returns:
            The cells that ran

        Raises:
            EvaluationError: when a cell fails; later cells do not run
        """
        policy = policy or DeleteDefinitions()
        order = [n for n in self.topology.topological_order(nodes) if policy.should_run(n)]
        to_delete = set().union(*(n.definitions for n in order))
        policy.before_run(self, to_delete)

        for node in order:
            self.cell_results[node.cell_id]["queued"] = True
        for node in order:
            self._run_cell(node)
        return TopologicalOrder(runnable=order)

    def run_all(self) -> TopologicalOrder:
        """Run every code cell of the notebook."""
        return self.run_cells(self.topology.nodes)

    def set_bond_values_reactive(self, bond_values: Mapping[str, Any]) -> TopologicalOrder:
        """
        Replace the bond store with ``bond_values`` and re-run the cells
        that depend on any bound variable. Bound variables missing from
        ``bond_values`` go back to their widget's initial value, so the
        outcome depends on ``bond_values`` alone and never on an earlier
        update. Names the notebook does not declare bound are ignored.

        Returns:
            The cells that ran, in topological order
        """
        bound = set(self.topology.bound_variables)
        ignored = sorted(set(bond_values) - bound)
        if ignored:
            logger.warning("Ignoring values for names that are not bound: %s", ignored)

        accepted = {name: value for name, value in bond_values.items() if name in bound}
        if not accepted:
            self.bonds = {}
            return TopologicalOrder()

        coerced = {
            name: self._coerce(name, self.widgets.get(name), value)
            for name, value in accepted.items()
        }
        for name in bound - coerced.keys():
            coerced[name] = initial_value(self.widgets.get(name))
        self.bonds = {name: {"value": value} for name, value in accepted.items()}
        for name, value in coerced.items():
            self.kernel.set_variable(name, value)

        bond_cells = {self.topology.bond_cell(name).cell_id for name in bound}
        dependents = [
            node for node in self.topology.where_referenced(bound)
            if node.cell_id not in bond_cells
        ]
        return self.run_cells(dependents)

    def delete_variables(self, names: Iterable[str]):
        self.kernel.delete_variables(names)

    def inject(self, name: str, value: Any):
        self.kernel.set_variable(name, value)

    def fetch(self, name: str) -> Any:
        if not self.kernel.has_variable(name):
            raise EvaluationError(f"{name} has no value")
        return self.kernel.get_variable(name)

    def checkpoint(self, names: Iterable[str]) -> tuple[dict, dict]:
        """Save the given bindings and all cell results."""
        return self.kernel.checkpoint(names), copy.deepcopy(self.cell_results)

    def restore(self, saved: tuple[dict, dict]):
        bindings, results = saved
        self.kernel.restore(bindings)
        self.cell_results = results

    def to_state(self) -> dict[str, Any]:
        """
        Render the full execution state as a tree of plain values.

        The tree is a deep copy, safe to keep while the notebook runs on.
        """
        return copy.deepcopy({
            "notebook_id": self.notebook.metadata.get("notebook_id", self.name),
            "path": self.notebook.path,
            "shortpath": self.name,
            "cell_order": [cell.id for cell in self.notebook.cells],
            "cell_inputs": {
                cell.id: {"cell_id": cell.id, "code": cell.source}
                for cell in self.notebook.cells
            },
            "cell_results": self.cell_results,
            "bonds": self.bonds,
        })
