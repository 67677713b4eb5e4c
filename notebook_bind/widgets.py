"""
Interactive controls that drive bound variables.

A notebook declares a bound variable with a cell whose whole body is::

    x = bind(Slider(1, 10))

When served, the cell renders the widget and ``x`` takes the value sent
by the client; run as plain Python, ``bind`` just returns the widget's
initial value.
"""

import html
from typing import Any, Optional, Sequence


class Widget:
    """Base class for bindable controls."""

    def initial_value(self) -> Any:
        return None

    def transform_value(self, raw: Any) -> Any:
        """Coerce a value received from the client."""
        return raw

    def _repr_html_(self) -> str:
        raise NotImplementedError


def bind(widget: Widget) -> Any:
    """Return the initial value of ``widget``."""
    if not hasattr(widget, "initial_value"):
        raise TypeError(f"bind() expects a widget, got {type(widget).__name__}")
    return widget.initial_value()


def initial_value(widget: Any) -> Any:
    method = getattr(widget, "initial_value", None)
    return method() if callable(method) else None


def transform_value(widget: Any, raw: Any) -> Any:
    method = getattr(widget, "transform_value", None)
    return method(raw) if callable(method) else raw


def _number(raw: Any):
    if isinstance(raw, bool):
        return int(raw)
    if isinstance(raw, (int, float)):
        return raw
    value = float(raw)
    return int(value) if value.is_integer() else value


class Slider(Widget):
    def __init__(self, start, stop, step=1, default=None, show_value: bool = False):
        if stop < start:
            raise ValueError("Slider stop must not be smaller than start")
        self.start = start
        self.stop = stop
        self.step = step
        self.default = start if default is None else default
        self.show_value = show_value

    def initial_value(self):
        return self.default

    def transform_value(self, raw):
        return min(max(_number(raw), self.start), self.stop)

    def _repr_html_(self) -> str:
        out = f"<output>{self.default}</output>" if self.show_value else ""
        return (
            f'<input type="range" min="{self.start}" max="{self.stop}" '
            f'step="{self.step}" value="{self.default}">{out}'
        )

    def __repr__(self):
        return f"Slider({self.start}, {self.stop}, step={self.step}, default={self.default!r})"


class NumberField(Widget):
    def __init__(self, default=0, start=None, stop=None, step=1):
        self.default = default
        self.start = start
        self.stop = stop
        self.step = step

    def initial_value(self):
        return self.default

    def transform_value(self, raw):
        value = _number(raw)
        if self.start is not None:
            value = max(value, self.start)
        if self.stop is not None:
            value = min(value, self.stop)
        return value

    def _repr_html_(self) -> str:
        bounds = ""
        if self.start is not None:
            bounds += f' min="{self.start}"'
        if self.stop is not None:
            bounds += f' max="{self.stop}"'
        return f'<input type="number"{bounds} step="{self.step}" value="{self.default}">'


class TextField(Widget):
    def __init__(self, default: str = "", placeholder: str = ""):
        self.default = default
        self.placeholder = placeholder

    def initial_value(self):
        return self.default

    def transform_value(self, raw):
        return "" if raw is None else str(raw)

    def _repr_html_(self) -> str:
        return (
            f'<input type="text" value="{html.escape(self.default)}" '
            f'placeholder="{html.escape(self.placeholder)}">'
        )


class CheckBox(Widget):
    def __init__(self, default: bool = False):
        self.default = default

    def initial_value(self):
        return self.default

    def transform_value(self, raw):
        return bool(raw)

    def _repr_html_(self) -> str:
        checked = " checked" if self.default else ""
        return f'<input type="checkbox"{checked}>'


class Select(Widget):
    def __init__(self, options: Sequence[Any], default: Optional[Any] = None):
        if not options:
            raise ValueError("Select needs at least one option")
        self.options = list(options)
        self.default = self.options[0] if default is None else default

    def initial_value(self):
        return self.default

    def transform_value(self, raw):
        if raw not in self.options:
            raise ValueError(f"{raw!r} is not one of the options")
        return raw

    def _repr_html_(self) -> str:
        items = "".join(
            f'<option{" selected" if o == self.default else ""}>{html.escape(str(o))}</option>'
            for o in self.options
        )
        return f"<select>{items}</select>"
