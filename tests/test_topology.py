"""
Tests for static cell analysis and the dependency graph.
"""

import pytest

from notebook_bind.errors import UnknownSymbolError
from notebook_bind.topology import NotebookTopology, analyze_cell

from conftest import SLIDER_CELLS, build_notebook


def topology_of(cells) -> NotebookTopology:
    return NotebookTopology.from_notebook(build_notebook(cells))


def ids(nodes):
    return [n.cell_id for n in nodes]


class TestAnalyzeCell:
    def test_assignment(self):
        """Test a simple assignment."""
        node = analyze_cell("c", 0, "y = x + 1")
        assert node.definitions == {"y"}
        assert node.references == {"x"}

    def test_builtins_are_not_references(self):
        """Test that builtins are not references."""
        node = analyze_cell("c", 0, "n = len(items)\nprint(n)")
        assert node.references == {"items"}

    def test_own_definitions_are_not_references(self):
        """Test names a cell defines and then reads."""
        node = analyze_cell("c", 0, "a = 1\nb = a + 1")
        assert node.definitions == {"a", "b"}
        assert node.references == frozenset()

    def test_imports_define_names(self):
        """Test import definitions."""
        node = analyze_cell("c", 0, "import os.path\nimport numpy as np\nfrom math import sqrt as root")
        assert node.definitions == {"os", "np", "root"}

    def test_function_locals_do_not_leak(self):
        """Test function scopes."""
        source = "def f(a, *args, k=default, **kw):\n    local = a + offset\n    return local\n"
        node = analyze_cell("c", 0, source)
        assert node.definitions == {"f"}
        assert node.references == {"default", "offset"}

    def test_local_used_before_assignment_is_local(self):
        """Test a local assigned later in the function."""
        node = analyze_cell("c", 0, "def f():\n    print(tmp)\n    tmp = 1\n")
        assert node.references == frozenset()

    def test_lambda_and_comprehension_scopes(self):
        """Test lambda and comprehension scopes."""
        node = analyze_cell("c", 0, "g = lambda v: v * scale\nsq = [i * i for i in data if i > limit]")
        assert node.definitions == {"g", "sq"}
        assert node.references == {"scale", "data", "limit"}

    def test_dict_comprehension(self):
        """Test dict comprehensions."""
        node = analyze_cell("c", 0, "d = {k: v for k, v in pairs}")
        assert node.definitions == {"d"}
        assert node.references == {"pairs"}

    def test_class_definition(self):
        """Test class bodies."""
        node = analyze_cell("c", 0, "class Point(Base):\n    dims = 2\n    def norm(self):\n        return self.dims\n")
        assert node.definitions == {"Point"}
        assert node.references == {"Base"}

    def test_syntax_error_gives_empty_node(self):
        """Test a cell that does not parse."""
        node = analyze_cell("c", 0, "def (:")
        assert node.definitions == frozenset()
        assert node.references == frozenset()
        assert node.bond is None

    def test_bond_declaration(self):
        """Test detecting bind()."""
        node = analyze_cell("c", 0, "x = bind(Slider(1, 10))")
        assert node.bond.name == "x"
        assert node.bond.widget_source == "Slider(1, 10)"
        assert node.definitions == {"x"}
        assert node.references == {"bind", "Slider"}

    def test_bond_declaration_through_module(self):
        """Test bind() called through a module."""
        node = analyze_cell("c", 0, "size = widgets.bind(widgets.NumberField(3))")
        assert node.bond.name == "size"

    @pytest.mark.parametrize("source", [
        "x = bind(a, b)",
        "x = other(Slider(1, 2))",
        "x = bind(Slider(1, 2))\ny = 2",
        "x, y = bind(Slider(1, 2))",
    ])
    def test_not_bond_declarations(self, source):
        """Test cells that only look like bond declarations."""
        assert analyze_cell("c", 0, source).bond is None


class TestNotebookTopology:
    def setup_method(self):
        self.topology = topology_of(SLIDER_CELLS)

    def test_bound_variables(self):
        """Test listing bound variables."""
        assert self.topology.bound_variables == ["x"]
        assert self.topology.bond_cell("x").cell_id == "c_x"
        assert self.topology.bond_cell("y") is None

    def test_where_assigned_and_referenced(self):
        """Test lookups by name."""
        assert ids(self.topology.where_assigned({"y", "z"})) == ["c_y", "c_z"]
        assert ids(self.topology.where_referenced({"x"})) == ["c_y"]

    def test_topological_order_includes_dependents(self):
        """Test that dependents are included."""
        order = self.topology.topological_order(self.topology.where_referenced({"x"}))
        assert ids(order) == ["c_y", "c_z"]

    def test_topological_order_puts_dependencies_first(self):
        """Test dependency order."""
        topology = topology_of([("b", "b = a + 1"), ("c", "c = 3"), ("a", "a = 1")])
        assert ids(topology.topological_order(topology.nodes)) == ["c", "a", "b"]

    def test_topological_order_with_cycle(self):
        """Test cells that reference each other."""
        topology = topology_of([("p", "p = q"), ("q", "q = p"), ("r", "r = 1")])
        assert ids(topology.topological_order(topology.nodes)) == ["r", "p", "q"]

    def test_bond_connections(self):
        """Test bond connections."""
        assert self.topology.bond_connections() == {"x": ["y", "z"]}

    def test_bond_connections_between_bonds(self):
        """Test a bond whose widget reads another bond."""
        topology = topology_of([
            ("imp", "from notebook_bind.widgets import bind, Slider"),
            ("a", "a = bind(Slider(1, 5))"),
            ("b", "b = bind(Slider(1, a))"),
            ("c", "c = a + b"),
        ])
        assert topology.bond_connections() == {"a": ["b", "c"], "b": ["c"]}

    def test_upstream_roots_stop_at_bond_cells(self):
        """Test that bond cells are roots."""
        roots = self.topology.upstream_roots(self.topology.where_assigned({"z"}))
        assert ids(roots) == ["c_x"]

    def test_root_variables(self):
        """Test root variables of an output."""
        assert self.topology.root_variables(["z"]) == {"x"}
        assert self.topology.root_variables(["w"]) == {"w"}

    def test_root_variables_without_bonds(self):
        """Test root variables in a notebook without bonds."""
        topology = topology_of([
            ("a", "a = 2"),
            ("b", "b = 3"),
            ("s", "s = a + b"),
            ("t", "t = s * 2"),
        ])
        assert topology.root_variables(["t"]) == {"a", "b"}

    def test_first_definer_wins(self):
        """Test a name defined in two cells."""
        topology = topology_of([("one", "v = 1"), ("two", "v = 2")])
        assert ids(topology.first_definers(["v"])) == ["one"]

    def test_unknown_symbol(self):
        """Test an undefined name."""
        with pytest.raises(UnknownSymbolError) as exc_info:
            self.topology.root_variables(["z", "nope"])
        assert exc_info.value.names == ["nope"]
