"""
Request cycles that change a session's live state.

Bond update: the client moved a control. The new bond values are
applied, the dependent cells re-run, and the client gets the patch from
the session's baseline to the new state, limited to the cells that ran.

Rebinding: the caller pins root input variables to literal values and
reads back computed outputs as plain values.
"""

import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from notebook_bind.diffing import diff
from notebook_bind.engine import OverrideBindings
from notebook_bind.errors import DecodeError, EvaluationError
from notebook_bind.session import BoundSession
from notebook_bind.utils import unpack

logger = logging.getLogger(__name__)


@dataclass
class BondUpdateResult:
    patches: list[dict] = field(default_factory=list)
    ids_of_cells_that_ran: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "patches": self.patches,
            "ids_of_cells_that_ran": self.ids_of_cells_that_ran,
        }


def decode_bonds(payload: bytes) -> dict[str, Any]:
    """
    Decode a msgpack map of bond values.

    Values wrapped as ``{"value": v}`` are unwrapped.

    Raises:
        DecodeError: if the payload is not a msgpack map with string keys
    """
    try:
        raw = unpack(payload)
    except (ValueError, TypeError) as e:
        raise DecodeError() from e
    if not isinstance(raw, dict) or not all(isinstance(k, str) for k in raw):
        raise DecodeError("Bond values must be a map from variable name to value")

    bonds = {}
    for name, value in raw.items():
        if isinstance(value, dict) and value.keys() == {"value"}:
            value = value["value"]
        bonds[name] = value
    return bonds


def decode_path_payload(segment: str) -> bytes:
    """
    Decode a base64 payload taken from a URL path.

    Both the standard and the URL-safe alphabet are accepted, padding
    is optional.
    """
    text = segment.replace("-", "+").replace("_", "/")
    text += "=" * (-len(text) % 4)
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError() from e


def only_relevant(state: Mapping[str, Any], cell_ids: Iterable[str]) -> dict[str, Any]:
    """
    The part of a state tree worth sending: results of ``cell_ids`` only,
    and no bond values, which belong to each client.
    """
    cell_ids = set(cell_ids)
    relevant = dict(state)
    relevant["cell_results"] = {
        cell_id: result
        for cell_id, result in state["cell_results"].items()
        if cell_id in cell_ids
    }
    relevant["bonds"] = {}
    return relevant


def apply_bond_update(session: BoundSession, bond_values: Mapping[str, Any]) -> BondUpdateResult:
    """
    Set bond values on a session and diff the outcome against its baseline.

    Raises:
        EvaluationError: a cell failed; the live state is left as the
            engine left it
        DecodeError: a value was rejected by its widget
    """
    live = session.notebook
    with session.token:
        order = live.set_bond_values_reactive(bond_values)
        new_state = live.to_state()

    ids_of_cells_that_ran = order.cell_ids
    logger.debug("Finished running %d cell(s)", len(ids_of_cells_that_ran))

    patches = diff(
        only_relevant(session.original_state, ids_of_cells_that_ran),
        only_relevant(new_state, ids_of_cells_that_ran),
    )
    return BondUpdateResult(patches=patches, ids_of_cells_that_ran=ids_of_cells_that_ran)


def top_params(session: BoundSession, output: str) -> list[str]:
    """
    Root input variables that determine ``output``.

    Raises:
        UnknownSymbolError: if the notebook does not define ``output``
    """
    return sorted(session.notebook.topology.root_variables([output]))


def rebind(session: BoundSession, outputs: Iterable[str], provided: Mapping[str, Any]) -> dict[str, Any]:
    """
    Recompute ``outputs`` with root inputs pinned to ``provided`` values.

    Only root variables of the outputs can be pinned; other names in
    ``provided`` are ignored. Unprovided roots are recomputed by their
    own cells. The session's bindings and cell results are restored
    afterwards, so other clients never see pinned values.

    Raises:
        UnknownSymbolError: if an output is not defined by the notebook
        EvaluationError: if a cell fails while recomputing
    """
    outputs = list(dict.fromkeys(outputs))
    if not outputs:
        return {}

    live = session.notebook
    topology = live.topology
    root = topology.root_variables(outputs)

    pinned = {name: value for name, value in provided.items() if name in root}
    ignored = sorted(set(provided) - root)
    if ignored:
        logger.info("Ignoring provided values for non-root variables %s", ignored)
    unprovided = root - pinned.keys()

    to_reeval = topology.where_referenced(root) + topology.where_assigned(unprovided)
    affected = set(root)
    for node in topology.topological_order(to_reeval):
        affected |= node.definitions

    with session.token:
        saved = live.checkpoint(affected)
        try:
            live.run_cells(to_reeval, OverrideBindings(root, pinned))
            return {name: live.fetch(name) for name in outputs}
        except EvaluationError:
            logger.error("Rebinding %s failed", outputs, exc_info=True)
            raise
        finally:
            live.restore(saved)
