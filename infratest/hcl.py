"""Render Python values as HCL literals for ``-var`` arguments."""

import json
from pathlib import Path
from typing import Any, Iterable, Mapping


def to_hcl(value: Any, nested: bool = False) -> str:
    """Render a value as an HCL literal.

    Top-level strings are passed through untouched because Terraform reads a
    bare ``-var name=value`` as a string. Strings inside lists and maps are
    quoted.

    Args:
        value: Value to render
        nested: Whether the value sits inside a list or map

    Returns:
        The HCL text
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False) if nested else value
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, Mapping):
        items = ", ".join(
            f"{json.dumps(str(k), ensure_ascii=False)} = {to_hcl(v, nested=True)}"
            for k, v in sorted(value.items())
        )
        return "{" + items + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(to_hcl(item, nested=True) for item in value) + "]"
    raise TypeError(f"Cannot render {type(value).__name__} as HCL")


def format_var_args(variables: Mapping[str, Any]) -> list[str]:
    args: list[str] = []
    for name in sorted(variables):
        args.extend(["-var", f"{name}={to_hcl(variables[name])}"])
    return args


def format_var_file_args(paths: Iterable[Path]) -> list[str]:
    return [f"-var-file={path}" for path in paths]


def format_backend_config_args(config: Mapping[str, str]) -> list[str]:
    return [f"-backend-config={key}={config[key]}" for key in sorted(config)]
