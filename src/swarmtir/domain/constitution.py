"""Constitution compiler — inline swarm declarations to a loadable artifact.

A declaration maps swarm name -> member name -> value. Callable members
are step functions and are written out as module-level functions built
from their own source text; every other member is written as Python
literal data. Each swarm becomes one declarative call::

    def echo__say(self, text):
      self.return_('Echo ' + text)
    swarms.describe('echo', {
      'say': echo__say
    });

The artifact expects a module global (``swarms`` by default) exposing
``describe(name, members)``; :func:`load_constitution` supplies one.

INVARIANT: a declaration supplied as a path is never rewritten.
"""

from __future__ import annotations

import ast
import inspect
import linecache
import math
import re
import runpy
import textwrap
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from swarmtir.domain.descriptors import ConstitutionSource, is_artifact_path
from swarmtir.errors import ConstitutionError

_LITERAL_SCALARS = (str, int, float, bool, type(None))
_NON_IDENT = re.compile(r"\W")
_UNPARSE_INDENT = 4


@dataclass(frozen=True)
class ConstitutionOptions:
    """Formatting knobs for the generated artifact."""

    nl: str = "\n"
    semi: str = ";"
    tab: str = "  "
    registry: str = "swarms"
    extension: str = "py"


def compile_constitution(
    target_dir: Path,
    declaration: ConstitutionSource,
    options: ConstitutionOptions | None = None,
) -> Path | str:
    """Materialize *declaration* under *target_dir* and return its path.

    Path-like declarations are returned exactly as given.
    """
    if is_artifact_path(declaration):
        return declaration  # type: ignore[return-value]
    if not isinstance(declaration, Mapping):
        msg = f"Constitution must be a mapping or a path, got {type(declaration).__name__}"
        raise ConstitutionError(msg)

    opts = options or ConstitutionOptions()
    source = render_constitution(declaration, opts)
    path = Path(target_dir) / f"constitution.{opts.extension}"
    path.write_text(source, encoding="utf-8")
    return path


def render_constitution(
    declaration: Mapping[str, Mapping[str, Any]],
    options: ConstitutionOptions | None = None,
) -> str:
    """Render the artifact source for *declaration* without writing it."""
    opts = options or ConstitutionOptions()
    used_names: set[str] = set()
    blocks: list[str] = []

    for swarm, members in declaration.items():
        if not isinstance(members, Mapping):
            msg = f"Swarm {swarm!r} must map member names to values, got {type(members).__name__}"
            raise ConstitutionError(msg)

        functions: list[str] = []
        entries: list[str] = []
        for prop, value in members.items():
            where = f"{swarm}.{prop}"
            if callable(value):
                fn_name = _function_name(swarm, prop, used_names)
                functions.append(_render_function(value, fn_name, opts, where))
                entries.append(f"{opts.nl}{opts.tab}{prop!r}: {fn_name}")
            else:
                literal = _literal(value, where, set())
                entries.append(f"{opts.nl}{opts.tab}{prop!r}: {literal!r}")

        call = f"{opts.registry}.describe({swarm!r}, {{{','.join(entries)}{opts.nl}}}){opts.semi}"
        blocks.append(opts.nl.join([*functions, call]))

    return opts.nl.join(blocks) + opts.nl


# ---------------------------------------------------------------------------
# Step functions
# ---------------------------------------------------------------------------


def _function_name(swarm: str, prop: str, used: set[str]) -> str:
    base = _NON_IDENT.sub("_", f"{swarm}__{prop}")
    if base[:1].isdigit():
        base = f"_{base}"
    name = base
    suffix = 2
    while name in used:
        name = f"{base}_{suffix}"
        suffix += 1
    used.add(name)
    return name


def _render_function(
    fn: Callable[..., Any],
    name: str,
    opts: ConstitutionOptions,
    where: str,
) -> str:
    fn = inspect.unwrap(fn)
    if not (inspect.isfunction(fn) or inspect.ismethod(fn)):
        msg = f"{where} is callable but not a Python function ({type(fn).__name__})"
        raise ConstitutionError(msg)

    if fn.__name__ == "<lambda>":
        node: ast.stmt = ast.Assign(
            targets=[ast.Name(id=name, ctx=ast.Store())],
            value=_lambda_node(fn, where),
            lineno=1,
        )
    else:
        node = _def_node(fn, where)
        node.name = name  # type: ignore[attr-defined]
        node.decorator_list = []  # type: ignore[attr-defined]
        _strip_annotations(node)

    source = ast.unparse(ast.fix_missing_locations(node))
    return opts.nl.join(_reindent(line, opts.tab) for line in source.splitlines())


def _def_node(fn: Callable[..., Any], where: str) -> ast.stmt:
    try:
        source = textwrap.dedent(inspect.getsource(fn))
        tree = ast.parse(source)
    except (OSError, TypeError, SyntaxError) as exc:
        msg = f"Cannot read the source of step function {where}: {exc}"
        raise ConstitutionError(msg) from exc

    node = tree.body[0] if tree.body else None
    if not isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
        msg = f"Source of step function {where} does not start with a def"
        raise ConstitutionError(msg)
    return node


def _strip_annotations(node: ast.stmt) -> None:
    # Annotation names are not importable inside the artifact.
    args: ast.arguments = node.args  # type: ignore[attr-defined]
    for arg in (*args.posonlyargs, *args.args, *args.kwonlyargs, args.vararg, args.kwarg):
        if arg is not None:
            arg.annotation = None
    node.returns = None  # type: ignore[attr-defined]


def _lambda_node(fn: Callable[..., Any], where: str) -> ast.Lambda:
    """Locate the lambda expression for *fn* in its defining file."""
    try:
        filename = inspect.getsourcefile(fn)
    except TypeError as exc:
        msg = f"Cannot locate the source of step function {where}: {exc}"
        raise ConstitutionError(msg) from exc
    lines = linecache.getlines(filename or "", fn.__globals__)
    if not lines:
        msg = f"Cannot locate the source of step function {where}"
        raise ConstitutionError(msg)
    try:
        tree = ast.parse("".join(lines))
    except SyntaxError as exc:
        msg = f"Cannot parse the source of step function {where}: {exc}"
        raise ConstitutionError(msg) from exc

    code = fn.__code__
    arg_names = list(code.co_varnames[: code.co_argcount])
    candidates = [
        node
        for node in ast.walk(tree)
        if isinstance(node, ast.Lambda)
        and node.lineno == code.co_firstlineno
        and [a.arg for a in (*node.args.posonlyargs, *node.args.args)] == arg_names
    ]
    if len(candidates) != 1:
        msg = (
            f"Step function {where} is a lambda that cannot be told apart from "
            f"{len(candidates) - 1} other lambda(s) on line {code.co_firstlineno}; use a def"
        )
        raise ConstitutionError(msg)
    return candidates[0]


def _reindent(line: str, tab: str) -> str:
    stripped = line.lstrip(" ")
    depth, rest = divmod(len(line) - len(stripped), _UNPARSE_INDENT)
    return tab * depth + " " * rest + stripped


# ---------------------------------------------------------------------------
# Structured data
# ---------------------------------------------------------------------------


def _literal(value: Any, where: str, active: set[int]) -> Any:
    """Return *value* as plain literal data, rejecting anything unwritable.

    *active* holds the ids of containers currently being walked; meeting
    one again means the data refers back to an enclosing object.
    """
    if isinstance(value, _LITERAL_SCALARS):
        if isinstance(value, float) and not math.isfinite(value):
            msg = f"{where} is {value!r}, which has no literal form"
            raise ConstitutionError(msg)
        return value

    if isinstance(value, (Mapping, list, tuple)):
        marker = id(value)
        if marker in active:
            msg = (
                f"{where} refers back to an enclosing object; "
                "a declaration cannot reference itself"
            )
            raise ConstitutionError(msg)
        active.add(marker)
        try:
            if isinstance(value, Mapping):
                out: dict[Any, Any] = {}
                for key, item in value.items():
                    if not isinstance(key, _LITERAL_SCALARS):
                        msg = f"{where} has a {type(key).__name__} key, keys must be literals"
                        raise ConstitutionError(msg)
                    out[key] = _literal(item, f"{where}.{key}", active)
                return out
            items = [_literal(item, f"{where}[{i}]", active) for i, item in enumerate(value)]
            return tuple(items) if isinstance(value, tuple) else items
        finally:
            active.discard(marker)

    msg = f"{where} holds a {type(value).__name__}, which cannot be written as literal data"
    raise ConstitutionError(msg)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


class SwarmRegistry:
    """Collects ``describe`` calls made by a constitution artifact."""

    def __init__(self) -> None:
        self.swarms: dict[str, dict[str, Any]] = {}

    def describe(self, name: str, members: Mapping[str, Any]) -> dict[str, Any]:
        self.swarms[name] = dict(members)
        return self.swarms[name]

    def __getitem__(self, name: str) -> dict[str, Any]:
        return self.swarms[name]

    def __contains__(self, name: object) -> bool:
        return name in self.swarms


def load_constitution(
    path: str | Path,
    registry: SwarmRegistry | None = None,
    *,
    name: str = "swarms",
) -> SwarmRegistry:
    """Execute the artifact at *path* against *registry* and return it."""
    registry = registry if registry is not None else SwarmRegistry()
    runpy.run_path(str(path), init_globals={name: registry})
    return registry
