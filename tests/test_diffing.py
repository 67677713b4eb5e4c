"""
Tests for state tree diffing.
"""

import pytest

from notebook_bind.diffing import apply_patches, diff


class TestDiff:
    def test_equal_trees(self):
        """Test that equal trees give no patches."""
        tree = {"a": {"b": [1, 2]}, "c": None}
        assert diff(tree, {"a": {"b": [1, 2]}, "c": None}) == []

    def test_nested_replace(self):
        """Test replacing a nested value."""
        old = {"cell_results": {"c1": {"outputs": [1]}, "c2": {"outputs": [2]}}}
        new = {"cell_results": {"c1": {"outputs": [1]}, "c2": {"outputs": [3]}}}

        assert diff(old, new) == [
            {"op": "replace", "path": ["cell_results", "c2", "outputs"], "value": [3]},
        ]

    def test_add_and_remove(self):
        """Test added and removed keys."""
        patches = diff({"a": 1, "b": 2}, {"b": 2, "c": 3})

        assert patches == [
            {"op": "remove", "path": ["a"]},
            {"op": "add", "path": ["c"], "value": 3},
        ]

    def test_type_changes_are_patched(self):
        """Test that 1 and True are not treated as equal."""
        assert diff({"v": 1}, {"v": 1.0}) == [{"op": "replace", "path": ["v"], "value": 1.0}]
        assert diff({"v": 1}, {"v": True}) != []

    def test_mapping_replaced_by_scalar(self):
        """Test replacing a mapping with a scalar."""
        assert diff({"v": {"x": 1}}, {"v": None}) == [{"op": "replace", "path": ["v"], "value": None}]

    @pytest.mark.parametrize("old, new", [
        ({"a": {"b": 1, "c": [1, 2]}}, {"a": {"b": 2, "d": "x"}}),
        ({"x": {}}, {"x": {"y": {"z": 1}}}),
        ({"keep": 1, "drop": {"deep": True}}, {"keep": 1}),
        ([1, 2], {"now": "a map"}),
    ])
    def test_patches_reproduce_target(self, old, new):
        """Test that applying the patches gives the new tree."""
        assert apply_patches(old, diff(old, new)) == new


class TestApplyPatches:
    def test_does_not_mutate_input(self):
        """Test that the source tree is left untouched."""
        tree = {"a": {"b": 1}}
        apply_patches(tree, [{"op": "replace", "path": ["a", "b"], "value": 2}])
        assert tree == {"a": {"b": 1}}

    def test_replace_missing_key(self):
        """Test replacing a key that is not there yet."""
        with pytest.raises(KeyError):
            apply_patches({"a": 1}, [{"op": "replace", "path": ["b"], "value": 2}])

    def test_unknown_operation(self):
        """Test rejecting an unknown patch operation."""
        with pytest.raises(ValueError):
            apply_patches({"a": 1}, [{"op": "move", "path": ["a"]}])
