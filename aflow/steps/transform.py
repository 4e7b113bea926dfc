"""Transform step: evaluate a short user snippet against a read-only context."""

from __future__ import annotations

import ast
import asyncio
import builtins
import json
import logging
import multiprocessing
import textwrap
import threading
from multiprocessing.pool import Pool
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from ..errors import StepConfigurationError, TransformError
from .base import StepExecutor

logger = logging.getLogger(__name__)

ENTRYPOINT = "transform"
DEFAULT_TIMEOUT = 10.0
STARTUP_TIMEOUT = 60.0

SAFE_BUILTINS = MappingProxyType(
    {
        name: getattr(builtins, name)
        for name in (
            "abs", "all", "any", "bool", "dict", "divmod", "enumerate", "filter",
            "float", "int", "isinstance", "len", "list", "map", "max", "min",
            "range", "reversed", "round", "set", "sorted", "str", "sum", "tuple",
            "zip", "ValueError", "KeyError", "TypeError",
        )
        if hasattr(builtins, name)
    }
)

BLOCKED_ATTRIBUTES = frozenset({"format", "format_map"})

FORBIDDEN_NODES = (
    ast.Import,
    ast.ImportFrom,
    ast.Global,
    ast.Nonlocal,
    ast.ClassDef,
    ast.With,
    ast.AsyncWith,
    ast.AsyncFor,
    ast.AsyncFunctionDef,
    ast.Await,
    ast.Yield,
    ast.YieldFrom,
)


class SnippetValidator(ast.NodeVisitor):
    """Reject syntax that could reach outside the sandbox or suspend."""

    def generic_visit(self, node: ast.AST) -> None:
        if isinstance(node, FORBIDDEN_NODES):
            raise TransformError(
                f"'{type(node).__name__}' is not allowed in transform code"
            )
        super().generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if node.id.startswith("_"):
            raise TransformError(f"Name '{node.id}' is not allowed in transform code")
        self.generic_visit(node)

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if node.attr.startswith("_") or node.attr in BLOCKED_ATTRIBUTES:
            raise TransformError(
                f"Attribute '{node.attr}' is not allowed in transform code"
            )
        self.generic_visit(node)


def freeze(value: Any) -> Any:
    """Deep-copy ``value`` into read-only containers."""
    if isinstance(value, Mapping):
        return MappingProxyType({key: freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(item) for item in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, MappingProxyType):
        return dict(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def compile_snippet(code: str) -> Any:
    """Compile ``code`` into a callable taking the frozen context.

    A bare expression is returned implicitly; otherwise the snippet is used
    as a function body and must ``return`` its result.
    """
    body = textwrap.dedent(code).strip()
    try:
        ast.parse(body, mode="eval")
    except SyntaxError:
        wrapped = textwrap.indent(body, "    ")
    else:
        wrapped = "    return (\n" + textwrap.indent(body, "        ") + "\n    )"
    source = f"def {ENTRYPOINT}(context):\n{wrapped}\n"

    try:
        tree = ast.parse(source, mode="exec")
    except SyntaxError as exc:
        raise TransformError(f"Invalid transform code: {exc.msg} (line {exc.lineno})") from exc

    SnippetValidator().visit(tree)
    namespace: Dict[str, Any] = {"__builtins__": dict(SAFE_BUILTINS)}
    exec(compile(tree, "<transform>", "exec"), namespace)
    return namespace[ENTRYPOINT]


def _to_document(result: Any) -> Dict[str, Any]:
    if result is None:
        return {}
    try:
        output = json.loads(json.dumps(result, default=_thaw, allow_nan=False))
    except (TypeError, ValueError) as exc:
        raise TransformError(f"Transform result is not JSON-serializable: {exc}") from exc
    if not isinstance(output, dict):
        raise TransformError(
            f"Transform must return an object, got {type(result).__name__}"
        )
    return output


def run_snippet(code: str, context: Dict[str, Any]) -> Tuple[bool, Any]:
    """Compile and run ``code`` inside a pool process.

    Returns ``(True, output)`` or ``(False, message)`` so that only plain
    data crosses the process boundary.
    """
    try:
        fn = compile_snippet(code)
        return True, _to_document(fn(freeze(context)))
    except TransformError as exc:
        return False, str(exc)
    except Exception as exc:
        return False, f"Transform failed: {type(exc).__name__}: {exc}"


def _ready() -> bool:
    return True


class TransformActionExecutor(StepExecutor):
    """Evaluate ``config["code"]`` and merge the returned object into the context.

    The snippet sees a deep-frozen copy of the context, has no imports, no
    dunder access and only a small set of builtins, and may not await.

    Snippets run in a spawned worker pool so the event loop stays free. A
    snippet still running after ``timeout`` seconds fails the step and the
    pool is terminated, taking any snippet sharing it down as well; the next
    call starts a fresh pool.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, processes: int = 1) -> None:
        self._timeout = timeout
        self._processes = processes
        self._pool: Optional[Pool] = None
        self._pool_lock = threading.Lock()

    def _get_pool(self) -> Pool:
        with self._pool_lock:
            if self._pool is None:
                pool = multiprocessing.get_context("spawn").Pool(processes=self._processes)
                try:
                    pool.apply_async(_ready).get(STARTUP_TIMEOUT)
                except Exception:
                    pool.terminate()
                    raise
                self._pool = pool
                logger.debug(f"Started transform pool with {self._processes} process(es)")
            return self._pool

    def _discard(self, pool: Pool) -> None:
        with self._pool_lock:
            if self._pool is pool:
                self._pool = None
        pool.terminate()

    def close(self) -> None:
        with self._pool_lock:
            pool, self._pool = self._pool, None
        if pool is not None:
            pool.terminate()

    async def execute(
        self, config: Dict[str, Any], context: Mapping[str, Any]
    ) -> Dict[str, Any]:
        code = config.get("code")
        if not isinstance(code, str) or not code.strip():
            raise StepConfigurationError(
                'Transform action requires a non-empty "code" string in config.code'
            )

        try:
            pool = await asyncio.to_thread(self._get_pool)
        except Exception as exc:
            raise TransformError(f"Transform pool did not start: {exc!r}") from exc

        try:
            pending = pool.apply_async(run_snippet, (code, dict(context)))
            ok, value = await asyncio.to_thread(pending.get, self._timeout)
        except multiprocessing.TimeoutError:
            logger.warning(f"Transform exceeded {self._timeout:g}s, restarting pool")
            await asyncio.to_thread(self._discard, pool)
            raise TransformError(f"Transform timed out after {self._timeout:g}s") from None
        except Exception as exc:
            raise TransformError(f"Transform failed: {type(exc).__name__}: {exc}") from exc

        if not ok:
            raise TransformError(value)
        logger.debug(f"Transform produced keys: {sorted(value)}")
        return value
