from __future__ import annotations

import importlib
import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class CommandSpec:
    name: str
    handler: Callable[..., None]


# module name -> {cli command name: function name}
_FUNCTION_COMMANDS: dict[str, dict[str, str]] = {
    "run": {"run": "run", "plan": "show_plan"},
    "heal": {"heal": "heal"},
}


def _import_module(module_name: str) -> object | None:
    try:
        return importlib.import_module(module_name)
    except Exception as exc:  # pragma: no cover
        logger.error("Failed to import command module %s: %s", module_name, exc)
        return None


def _build_function_commands(module_name: str, module: object) -> list[CommandSpec]:
    specs: list[CommandSpec] = []
    for cmd_name, attr in _FUNCTION_COMMANDS.get(module_name, {}).items():
        handler = getattr(module, attr, None)
        if callable(handler):
            specs.append(CommandSpec(name=cmd_name, handler=handler))
        else:  # pragma: no cover
            logger.error("Command %s.%s not found or not callable", module_name, attr)
    return specs


def discover_commands(
    package_path: Path, package: str = "taskweave.commands"
) -> list[CommandSpec]:
    """
    Discover the standalone command callables of every module in ``package``.

    Modules without an entry in the command table are skipped.
    """
    commands: list[CommandSpec] = []

    for file in sorted(package_path.glob("*.py")):
        module_name = file.stem
        if module_name.startswith("_") or module_name not in _FUNCTION_COMMANDS:
            continue
        module = _import_module(f"{package}.{module_name}")
        if module is None:
            continue
        commands.extend(_build_function_commands(module_name, module))

    return commands


__all__ = ["CommandSpec", "discover_commands"]
