"""
Utility functions for notebook-bind.
"""

import json
from typing import Any

import msgpack
from rich.syntax import Syntax
from rich.text import Text


def pack(obj: Any) -> bytes:
    """Encode a value with msgpack."""
    return msgpack.packb(obj, use_bin_type=True)


def unpack(data: bytes) -> Any:
    """Decode msgpack bytes."""
    return msgpack.unpackb(data, raw=False)


def _preferred_text(data: dict[str, Any]) -> tuple[str, str]:
    """Pick the richest textual representation of a MIME bundle."""
    if "text/html" in data:
        return data["text/html"], "html"
    if "text/markdown" in data:
        return data["text/markdown"], "markdown"
    if "application/json" in data:
        val = data["application/json"]
        return (json.dumps(val, indent=2) if not isinstance(val, str) else val), "json"
    return data.get("text/plain", str(data)), "python"


def format_rich_output(output: dict[str, Any]):
    """
    Format an output dictionary as a Rich renderable.

    Args:
        output: Output dictionary from ExecutionResult

    Returns:
        Rich renderable object for console display
    """
    output_type = output.get("type", "")

    if output_type == "stream":
        text = output.get("text", "")
        if output.get("name") == "stderr":
            return Text(text.rstrip("\n"), style="yellow")
        return Text(text.rstrip("\n"))

    elif output_type in ("execute_result", "display_data"):
        text, lexer = _preferred_text(output.get("data", {}))
        if lexer in ("html", "markdown"):
            return Text(text, style="cyan")
        return Syntax(text, lexer, theme="monokai", line_numbers=False)

    elif output_type == "error":
        error_text = Text()
        error_text.append(output.get("ename", "Error"), style="bold red")
        error_text.append(f": {output.get('evalue', '')}", style="red")
        for tb_line in output.get("traceback", []):
            if isinstance(tb_line, str):
                error_text.append(f"\n{tb_line.rstrip()}", style="dim red")
        return error_text

    return Text(str(output), style="dim")


def truncate_text(text: str, max_length: int = 100) -> str:
    """Truncate text to max_length, adding ellipsis if needed."""
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."
