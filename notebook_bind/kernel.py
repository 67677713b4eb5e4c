"""
NotebookKernel: an isolated Python workspace that maintains execution state.
"""

import ast
import builtins
import io
import sys
import threading
import traceback
from contextlib import contextmanager
from typing import Any, Iterable, Optional
from dataclasses import dataclass, field

from IPython.lib.pretty import pretty


_MISSING = object()


REPR_METHODS = (
    ("text/html", "_repr_html_"),
    ("text/markdown", "_repr_markdown_"),
    ("application/json", "_repr_json_"),
    ("text/latex", "_repr_latex_"),
    ("image/svg+xml", "_repr_svg_"),
    ("image/png", "_repr_png_"),
)


def _build_mime_bundle(obj) -> dict:
    """
    MIME bundle for a cell's result value.

    ``text/plain`` is the first textual rich representation when there
    is one (so widgets show their markup), the pretty-printed value
    otherwise.
    """
    rich = {}
    for mime_type, method_name in REPR_METHODS:
        method = getattr(obj, method_name, None)
        value = method() if callable(method) else None
        if value is not None:
            rich[mime_type] = value

    first = next(iter(rich.values()), None)
    return {"text/plain": first if isinstance(first, str) else pretty(obj), **rich}


class _ThreadStream:
    """Stream wrapper that diverts writes to a per-thread buffer while capturing."""

    def __init__(self, stream):
        self._stream = stream
        self._local = threading.local()

    @property
    def buffer(self) -> Optional[io.StringIO]:
        return getattr(self._local, "buffer", None)

    @buffer.setter
    def buffer(self, value: Optional[io.StringIO]):
        self._local.buffer = value

    def write(self, text):
        target = self.buffer
        if target is None:
            return self._stream.write(text)
        return target.write(text)

    def flush(self):
        if self.buffer is None:
            self._stream.flush()

    def __getattr__(self, name):
        return getattr(self._stream, name)


_install_lock = threading.Lock()


def _routed_stream(name: str) -> _ThreadStream:
    with _install_lock:
        stream = getattr(sys, name)
        if not isinstance(stream, _ThreadStream):
            stream = _ThreadStream(stream)
            setattr(sys, name, stream)
        return stream


@contextmanager
def capture_streams():
    """
    Capture stdout/stderr written by the current thread.

    Other threads keep writing to the real streams, so kernels running
    in parallel never see each other's output.
    """
    out, err = _routed_stream("stdout"), _routed_stream("stderr")
    previous = out.buffer, err.buffer
    stdout, stderr = io.StringIO(), io.StringIO()
    out.buffer, err.buffer = stdout, stderr
    try:
        yield stdout, stderr
    finally:
        out.buffer, err.buffer = previous


@dataclass
class ExecutionResult:
    """Outcome of one cell run; ``outputs`` is what clients get to see."""
    success: bool
    outputs: list[dict[str, Any]] = field(default_factory=list)
    execution_count: int = 0
    error: Optional[str] = None
    return_value: Any = None


def _error_output(error: BaseException, filename: str) -> dict:
    # Drop the kernel's own frames; keep the ones inside the cell.
    tb = error.__traceback__
    while tb is not None and tb.tb_frame.f_code.co_filename != filename:
        tb = tb.tb_next
    return {
        "type": "error",
        "ename": type(error).__name__,
        "evalue": str(error),
        "traceback": traceback.format_exception(type(error), error, tb),
    }


def _split_last_expression(code: str, filename: str):
    """Compile ``code`` as statements plus an optional trailing expression."""
    module = ast.parse(code, filename=filename, mode="exec")
    last_expr = None
    if module.body and isinstance(module.body[-1], ast.Expr):
        last_expr = compile(ast.Expression(module.body.pop().value), filename, "eval")
    return compile(module, filename, "exec"), last_expr


class NotebookKernel:
    """
    Isolated Python workspace that maintains execution state.

    Every kernel owns its own namespace dict, so several notebooks can be
    live side by side in one process. Streams written while a cell runs
    are captured for the running thread only.
    """

    def __init__(self):
        self.namespace: dict[str, Any] = {
            "__name__": "__main__",
            "__builtins__": builtins,
            "__notebook__": True,
        }
        self.execution_count = 0

    def execute_cell(self, code: str, filename: Optional[str] = None) -> ExecutionResult:
        """
        Run ``code`` in this kernel's namespace.

        A trailing expression statement is evaluated and reported as the
        cell's ``execute_result``.

        Args:
            code: Python source of the cell
            filename: Name used in tracebacks

        Returns:
            ExecutionResult with outputs and status
        """
        self.execution_count += 1
        filename = filename or f"<cell {self.execution_count}>"
        error = None
        return_value = None

        with capture_streams() as (stdout, stderr):
            try:
                statements, last_expr = _split_last_expression(code, filename)
                exec(statements, self.namespace)
                if last_expr is not None:
                    return_value = eval(last_expr, self.namespace)
            except Exception as e:
                error = e

        outputs = [
            {"type": "stream", "name": name, "text": stream.getvalue()}
            for name, stream in (("stdout", stdout), ("stderr", stderr))
            if stream.getvalue()
        ]
        if error is not None:
            outputs.append(_error_output(error, filename))
        elif return_value is not None:
            outputs.append({"type": "execute_result", "data": _build_mime_bundle(return_value)})

        return ExecutionResult(
            success=error is None,
            outputs=outputs,
            execution_count=self.execution_count,
            error=str(error) if error is not None else None,
            return_value=return_value,
        )

    def get_variable(self, name: str) -> Any:
        return self.namespace.get(name)

    def has_variable(self, name: str) -> bool:
        return name in self.namespace

    def set_variable(self, name: str, value: Any):
        self.namespace[name] = value

    def del_variable(self, name: str):
        self.namespace.pop(name, None)

    def delete_variables(self, names: Iterable[str]):
        for name in names:
            self.del_variable(name)

    def checkpoint(self, names: Iterable[str]) -> dict[str, Any]:
        """
        Remember the current bindings of ``names`` so they can be restored.

        The objects themselves are kept, not copies: after :meth:`restore`
        aliases still point at the same object and instances still belong
        to the classes the notebook defined.
        """
        return {name: self.namespace.get(name, _MISSING) for name in names}

    def restore(self, saved: dict[str, Any]):
        """Put back bindings captured by :meth:`checkpoint`."""
        for name, value in saved.items():
            if value is _MISSING:
                self.del_variable(name)
            else:
                self.namespace[name] = value
