"""
Sandboxed evaluation of user-authored expressions and function bodies.

Scripts are written in a small subset of Python and evaluated by walking the
parsed ``ast`` against an allow-list; ``eval``/``exec`` are never used. The
scope exposes ``input``, ``vars``, ``messages`` and ``context_messages``; every
value is deep-copied first, so a script can only influence the run through
its return value (or through host callables passed in ``extras``).

Supported in expressions:
    constants, names, and/or/not, arithmetic, comparisons, ``x if c else y``,
    subscripts and slices, list/tuple/dict/set literals and comprehensions,
    f-strings, allow-listed builtins and str/list/dict methods.
    ``mapping.key`` reads ``mapping["key"]`` (missing keys read as None).
    ``true``/``false``/``null`` are aliases for True/False/None.

Supported in function bodies, additionally:
    assignment, augmented assignment, if/elif/else, for, while, break,
    continue, return, pass, expression statements.

Loop iterations, ``range()`` and the size of the strings, lists and integers
a script builds are bounded; ``%`` string formatting is not available.

Evaluation never raises: faults are returned in ``EvaluationResult.error``.
"""

import ast
import copy
import dataclasses
import json
import logging
import operator
import re
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

MAX_DEPTH = 100
MAX_ITERATIONS = 10_000
MAX_SEQUENCE_LENGTH = 1_000_000
MAX_EXPONENT = 10_000
MAX_INT_BITS = 64_000

_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
    ast.FloorDiv: operator.floordiv,
}

_CMP_OPS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}

_STR_METHODS = frozenset(
    {
        "capitalize", "count", "endswith", "find", "isalnum", "isalpha",
        "isdigit", "islower", "isnumeric", "isspace", "isupper", "join", "lower",
        "lstrip", "partition", "removeprefix", "removesuffix", "replace", "rfind",
        "rsplit", "rstrip", "split", "splitlines", "startswith", "strip", "title",
        "upper", "zfill",
    }
)
_LIST_METHODS = frozenset(
    {"append", "copy", "count", "extend", "index", "insert", "pop", "remove", "reverse", "sort"}
)
_DICT_METHODS = frozenset(
    {"copy", "get", "items", "keys", "pop", "setdefault", "update", "values"}
)

_TEMPLATE_PATTERN = re.compile(r"\$\{([^}]*)\}")


class SandboxError(Exception):
    """A script used a construct the sandbox does not allow."""


class _Return(Exception):
    def __init__(self, value: Any) -> None:
        self.value = value


class _Break(Exception):
    pass


class _Continue(Exception):
    pass


@dataclass
class EvaluationResult:
    """Outcome of an evaluation; ``error`` set means no value was produced."""

    value: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ExpressionScope:
    """Read-only inputs visible to a script."""

    input: Any = None
    vars: dict[str, Any] = field(default_factory=dict)
    messages: list[Any] = field(default_factory=list)
    context_messages: list[Any] | None = None

    def to_names(self) -> dict[str, Any]:
        """Deep-copied name table for one evaluation."""
        context_messages = self.context_messages if self.context_messages is not None else self.messages
        rendered_messages = [_plain(message) for message in self.messages]
        rendered_context = [_plain(message) for message in context_messages]
        return {
            "input": _plain(self.input),
            "vars": _plain(self.vars),
            "messages": rendered_messages,
            "context_messages": rendered_context,
            "contextMessages": rendered_context,
        }


def _plain(value: Any) -> Any:
    """Deep copy, turning dataclasses into dicts so scripts can dot-access them."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    return copy.deepcopy(value)


# ---------------------------------------------------------------------------
# Bounded builtins
# ---------------------------------------------------------------------------


def _safe_range(*args: int) -> range:
    result = range(*args)
    if len(result) > MAX_ITERATIONS:
        raise SandboxError(f"range() is limited to {MAX_ITERATIONS} items")
    return result


_BUILTINS: dict[str, Any] = {
    "abs": abs,
    "all": all,
    "any": any,
    "bool": bool,
    "dict": dict,
    "enumerate": enumerate,
    "float": float,
    "int": int,
    "len": len,
    "list": list,
    "max": max,
    "min": min,
    "range": _safe_range,
    "reversed": reversed,
    "round": round,
    "set": set,
    "sorted": sorted,
    "str": str,
    "sum": sum,
    "tuple": tuple,
    "zip": zip,
}

_CONSTANTS = {"true": True, "false": False, "null": None, "None": None, "True": True, "False": False}


def _check_length(size: int) -> None:
    if size > MAX_SEQUENCE_LENGTH:
        raise SandboxError(f"result longer than {MAX_SEQUENCE_LENGTH} items")


def _safe_pow(base: Any, exponent: Any) -> Any:
    if isinstance(exponent, int) and abs(exponent) > MAX_EXPONENT:
        raise SandboxError("exponent too large")
    if isinstance(base, int) and isinstance(exponent, int) and exponent > 0:
        if base.bit_length() * exponent > MAX_INT_BITS:
            raise SandboxError("power result too large")
    return operator.pow(base, exponent)


def _safe_mult(left: Any, right: Any) -> Any:
    for seq, count in ((left, right), (right, left)):
        if isinstance(seq, str | list | tuple) and isinstance(count, int):
            if len(seq) * max(count, 0) > MAX_SEQUENCE_LENGTH:
                raise SandboxError("sequence repetition too large")
    if isinstance(left, int) and isinstance(right, int):
        if left.bit_length() + right.bit_length() > MAX_INT_BITS:
            raise SandboxError("integer result too large")
    return operator.mul(left, right)


def _safe_add(left: Any, right: Any) -> Any:
    if isinstance(left, str | list | tuple) and isinstance(right, str | list | tuple):
        _check_length(len(left) + len(right))
    return operator.add(left, right)


def _safe_mod(left: Any, right: Any) -> Any:
    if isinstance(left, str):
        raise SandboxError("'%' string formatting is not supported")
    return operator.mod(left, right)


def _check_format_spec(spec: str) -> None:
    for number in re.findall(r"\d+", spec):
        _check_length(int(number))


class _SizedMethod:
    """A str/list method that checks the size of its result before running."""

    def __init__(self, func: Callable[..., Any]) -> None:
        self.func = func

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        return self.func(*args, **kwargs)


def _sized_zfill(text: str) -> Callable[..., Any]:
    def zfill(width: int) -> str:
        if isinstance(width, int):
            _check_length(width)
        return text.zfill(width)

    return zfill


def _sized_join(text: str) -> Callable[..., Any]:
    def join(iterable: Any) -> str:
        items = list(iterable)
        _check_length(
            sum(len(item) for item in items if isinstance(item, str)) + len(text) * max(len(items) - 1, 0)
        )
        return text.join(items)

    return join


def _sized_replace(text: str) -> Callable[..., Any]:
    def replace(old: str, new: str, count: int = -1) -> str:
        if isinstance(old, str) and isinstance(new, str) and isinstance(count, int):
            hits = text.count(old) if old else len(text) + 1
            if count >= 0:
                hits = min(hits, count)
            _check_length(len(text) + hits * max(len(new) - len(old), 0))
        return text.replace(old, new, count)

    return replace


def _sized_extend(items: list) -> Callable[..., Any]:
    def extend(iterable: Any) -> None:
        extra = list(iterable)
        _check_length(len(items) + len(extra))
        items.extend(extra)

    return extend


_SIZED_STR_METHODS = {"join": _sized_join, "replace": _sized_replace, "zfill": _sized_zfill}
_SIZED_LIST_METHODS = {"extend": _sized_extend}


# ---------------------------------------------------------------------------
# AST walker
# ---------------------------------------------------------------------------


class _Evaluator:
    def __init__(self, names: dict[str, Any], callables: Mapping[str, Callable[..., Any]]):
        self.names = names
        self.callables = dict(callables)
        self.permitted = {id(func) for func in self.callables.values()}
        self.iterations = 0

    # -- helpers ---------------------------------------------------------

    def _tick(self) -> None:
        self.iterations += 1
        if self.iterations > MAX_ITERATIONS:
            raise SandboxError(f"iteration limit of {MAX_ITERATIONS} exceeded")

    def _lookup(self, name: str) -> Any:
        if name.startswith("__"):
            raise SandboxError(f"name '{name}' is not allowed")
        if name in self.names:
            return self.names[name]
        if name in self.callables:
            return self.callables[name]
        if name in _CONSTANTS:
            return _CONSTANTS[name]
        raise SandboxError(f"name '{name}' is not defined")

    def _attribute(self, value: Any, attr: str) -> Any:
        if attr.startswith("_"):
            raise SandboxError(f"attribute '{attr}' is not allowed")
        if isinstance(value, dict):
            if attr in value:
                return value[attr]
            if attr in _DICT_METHODS:
                return getattr(value, attr)
            return None
        if isinstance(value, str) and attr in _STR_METHODS:
            if attr in _SIZED_STR_METHODS:
                return _SizedMethod(_SIZED_STR_METHODS[attr](value))
            return getattr(value, attr)
        if isinstance(value, list) and attr in _LIST_METHODS:
            if attr in _SIZED_LIST_METHODS:
                return _SizedMethod(_SIZED_LIST_METHODS[attr](value))
            return getattr(value, attr)
        if attr == "length" and isinstance(value, str | list | tuple):
            return len(value)
        raise SandboxError(f"'{type(value).__name__}' has no accessible attribute '{attr}'")

    def _check_callable(self, func: Any) -> None:
        if id(func) in self.permitted or isinstance(func, _SizedMethod):
            return
        owner = getattr(func, "__self__", None)
        name = getattr(func, "__name__", "")
        if isinstance(owner, str) and name in _STR_METHODS:
            return
        if isinstance(owner, list) and name in _LIST_METHODS:
            return
        if isinstance(owner, dict) and name in _DICT_METHODS:
            return
        raise SandboxError("call target is not permitted")

    # -- expressions -----------------------------------------------------

    def eval(self, node: ast.AST, depth: int = 0) -> Any:
        if depth > MAX_DEPTH:
            raise SandboxError("expression too deeply nested")
        method = getattr(self, f"_eval_{type(node).__name__}", None)
        if method is None:
            raise SandboxError(f"unsupported syntax: {type(node).__name__}")
        return method(node, depth + 1)

    def _eval_Expression(self, node: ast.Expression, depth: int) -> Any:
        return self.eval(node.body, depth)

    def _eval_Constant(self, node: ast.Constant, depth: int) -> Any:
        return node.value

    def _eval_Name(self, node: ast.Name, depth: int) -> Any:
        return self._lookup(node.id)

    def _eval_BoolOp(self, node: ast.BoolOp, depth: int) -> Any:
        # Python semantics: returns the deciding operand, not a coerced bool.
        result: Any = None
        for value_node in node.values:
            result = self.eval(value_node, depth)
            if isinstance(node.op, ast.And) and not result:
                return result
            if isinstance(node.op, ast.Or) and result:
                return result
        return result

    def _eval_UnaryOp(self, node: ast.UnaryOp, depth: int) -> Any:
        operand = self.eval(node.operand, depth)
        if isinstance(node.op, ast.Not):
            return not operand
        if isinstance(node.op, ast.USub):
            return -operand
        if isinstance(node.op, ast.UAdd):
            return +operand
        raise SandboxError("unsupported unary operator")

    def _eval_BinOp(self, node: ast.BinOp, depth: int) -> Any:
        left = self.eval(node.left, depth)
        right = self.eval(node.right, depth)
        return self._apply_binop(node.op, left, right)

    def _apply_binop(self, op: ast.operator, left: Any, right: Any) -> Any:
        if isinstance(op, ast.Pow):
            return _safe_pow(left, right)
        if isinstance(op, ast.Mult):
            return _safe_mult(left, right)
        if isinstance(op, ast.Add):
            return _safe_add(left, right)
        if isinstance(op, ast.Mod):
            return _safe_mod(left, right)
        func = _BIN_OPS.get(type(op))
        if func is None:
            raise SandboxError("unsupported binary operator")
        return func(left, right)

    def _eval_Compare(self, node: ast.Compare, depth: int) -> Any:
        left = self.eval(node.left, depth)
        for op_node, comparator in zip(node.ops, node.comparators, strict=True):
            func = _CMP_OPS.get(type(op_node))
            if func is None:
                raise SandboxError("unsupported comparator")
            right = self.eval(comparator, depth)
            if not func(left, right):
                return False
            left = right
        return True

    def _eval_IfExp(self, node: ast.IfExp, depth: int) -> Any:
        if self.eval(node.test, depth):
            return self.eval(node.body, depth)
        return self.eval(node.orelse, depth)

    def _eval_Attribute(self, node: ast.Attribute, depth: int) -> Any:
        return self._attribute(self.eval(node.value, depth), node.attr)

    def _eval_Subscript(self, node: ast.Subscript, depth: int) -> Any:
        target = self.eval(node.value, depth)
        index = self.eval(node.slice, depth)
        if not isinstance(target, Mapping | Sequence):
            raise SandboxError("subscript targets must be sequences or mappings")
        return target[index]

    def _eval_Slice(self, node: ast.Slice, depth: int) -> Any:
        lower = self.eval(node.lower, depth) if node.lower else None
        upper = self.eval(node.upper, depth) if node.upper else None
        step = self.eval(node.step, depth) if node.step else None
        return slice(lower, upper, step)

    def _eval_Call(self, node: ast.Call, depth: int) -> Any:
        func = self.eval(node.func, depth)
        if not callable(func):
            raise SandboxError("call target is not callable")
        self._check_callable(func)
        args = []
        for arg in node.args:
            if isinstance(arg, ast.Starred):
                args.extend(self.eval(arg.value, depth))
            else:
                args.append(self.eval(arg, depth))
        kwargs = {}
        for kw in node.keywords:
            if kw.arg is None:
                raise SandboxError("keyword unpacking (**kwargs) not permitted")
            kwargs[kw.arg] = self.eval(kw.value, depth)
        return func(*args, **kwargs)

    def _eval_Tuple(self, node: ast.Tuple, depth: int) -> Any:
        return tuple(self.eval(elt, depth) for elt in node.elts)

    def _eval_List(self, node: ast.List, depth: int) -> Any:
        return [self.eval(elt, depth) for elt in node.elts]

    def _eval_Set(self, node: ast.Set, depth: int) -> Any:
        return {self.eval(elt, depth) for elt in node.elts}

    def _eval_Dict(self, node: ast.Dict, depth: int) -> Any:
        result = {}
        for key_node, value_node in zip(node.keys, node.values, strict=True):
            if key_node is None:
                result.update(self.eval(value_node, depth))
            else:
                result[self.eval(key_node, depth)] = self.eval(value_node, depth)
        return result

    def _eval_JoinedStr(self, node: ast.JoinedStr, depth: int) -> Any:
        return "".join(str(self.eval(part, depth)) for part in node.values)

    def _eval_FormattedValue(self, node: ast.FormattedValue, depth: int) -> Any:
        value = self.eval(node.value, depth)
        if node.conversion == ord("r"):
            value = repr(value)
        elif node.conversion == ord("s"):
            value = str(value)
        elif node.conversion == ord("a"):
            value = ascii(value)
        spec = self.eval(node.format_spec, depth) if node.format_spec else ""
        _check_format_spec(spec)
        return format(value, spec)

    def _comprehension(self, generators: list[ast.comprehension], depth: int, emit: Callable[[], None]) -> None:
        saved = dict(self.names)
        try:
            self._run_generators(generators, 0, depth, emit)
        finally:
            self.names = saved

    def _run_generators(
        self, generators: list[ast.comprehension], index: int, depth: int, emit: Callable[[], None]
    ) -> None:
        if index == len(generators):
            emit()
            return
        generator = generators[index]
        if generator.is_async:
            raise SandboxError("async comprehensions are not supported")
        for item in self.eval(generator.iter, depth):
            self._tick()
            self._assign(generator.target, item, depth)
            if all(self.eval(condition, depth) for condition in generator.ifs):
                self._run_generators(generators, index + 1, depth, emit)

    def _eval_ListComp(self, node: ast.ListComp, depth: int) -> Any:
        result: list[Any] = []
        self._comprehension(node.generators, depth, lambda: result.append(self.eval(node.elt, depth)))
        return result

    def _eval_SetComp(self, node: ast.SetComp, depth: int) -> Any:
        result: set[Any] = set()
        self._comprehension(node.generators, depth, lambda: result.add(self.eval(node.elt, depth)))
        return result

    def _eval_GeneratorExp(self, node: ast.GeneratorExp, depth: int) -> Any:
        result: list[Any] = []
        self._comprehension(node.generators, depth, lambda: result.append(self.eval(node.elt, depth)))
        return result

    def _eval_DictComp(self, node: ast.DictComp, depth: int) -> Any:
        result: dict[Any, Any] = {}

        def emit() -> None:
            result[self.eval(node.key, depth)] = self.eval(node.value, depth)

        self._comprehension(node.generators, depth, emit)
        return result

    # -- statements ------------------------------------------------------

    def run_block(self, statements: list[ast.stmt], depth: int = 0) -> None:
        if depth > MAX_DEPTH:
            raise SandboxError("function body too deeply nested")
        for statement in statements:
            self.run_statement(statement, depth + 1)

    def run_statement(self, node: ast.stmt, depth: int) -> None:
        if isinstance(node, ast.Return):
            raise _Return(self.eval(node.value, depth) if node.value else None)
        if isinstance(node, ast.Expr):
            self.eval(node.value, depth)
            return
        if isinstance(node, ast.Assign):
            value = self.eval(node.value, depth)
            for target in node.targets:
                self._assign(target, value, depth)
            return
        if isinstance(node, ast.AugAssign):
            current = self.eval(_as_load(node.target), depth)
            self._assign(node.target, self._apply_binop(node.op, current, self.eval(node.value, depth)), depth)
            return
        if isinstance(node, ast.If):
            branch = node.body if self.eval(node.test, depth) else node.orelse
            self.run_block(branch, depth)
            return
        if isinstance(node, ast.For):
            self._run_loop(node, iter(self.eval(node.iter, depth)), depth)
            return
        if isinstance(node, ast.While):
            self._run_while(node, depth)
            return
        if isinstance(node, ast.Pass):
            return
        if isinstance(node, ast.Break):
            raise _Break()
        if isinstance(node, ast.Continue):
            raise _Continue()
        raise SandboxError(f"unsupported statement: {type(node).__name__}")

    def _run_loop(self, node: ast.For, items: Any, depth: int) -> None:
        for item in items:
            self._tick()
            self._assign(node.target, item, depth)
            try:
                self.run_block(node.body, depth)
            except _Break:
                return
            except _Continue:
                continue
        self.run_block(node.orelse, depth)

    def _run_while(self, node: ast.While, depth: int) -> None:
        while self.eval(node.test, depth):
            self._tick()
            try:
                self.run_block(node.body, depth)
            except _Break:
                return
            except _Continue:
                continue
        self.run_block(node.orelse, depth)

    def _assign(self, target: ast.expr, value: Any, depth: int) -> None:
        if isinstance(target, ast.Name):
            if target.id.startswith("__"):
                raise SandboxError(f"name '{target.id}' is not allowed")
            self.names[target.id] = value
            return
        if isinstance(target, ast.Tuple | ast.List):
            values = list(value)
            if len(values) != len(target.elts):
                raise SandboxError("unpacking length mismatch")
            for element, item in zip(target.elts, values, strict=True):
                self._assign(element, item, depth)
            return
        if isinstance(target, ast.Subscript):
            container = self.eval(target.value, depth)
            if not isinstance(container, dict | list):
                raise SandboxError("only dict and list items can be assigned")
            container[self.eval(target.slice, depth)] = value
            return
        if isinstance(target, ast.Attribute):
            container = self.eval(target.value, depth)
            if not isinstance(container, dict) or target.attr.startswith("_"):
                raise SandboxError("only dict keys can be assigned with dot access")
            container[target.attr] = value
            return
        raise SandboxError(f"cannot assign to {type(target).__name__}")


def _as_load(target: ast.expr) -> ast.expr:
    loaded = copy.copy(target)
    loaded.ctx = ast.Load()
    return loaded


def _describe(exc: Exception) -> str:
    if isinstance(exc, SandboxError):
        return str(exc)
    if isinstance(exc, SyntaxError):
        location = f" (line {exc.lineno})" if exc.lineno else ""
        return f"Invalid syntax: {exc.msg}{location}"
    message = str(exc)
    return f"{type(exc).__name__}: {message}" if message else type(exc).__name__


def _render_template_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, dict | list):
        return json.dumps(value)
    return str(value)


# ---------------------------------------------------------------------------
# Engines
# ---------------------------------------------------------------------------


class ExpressionEngine(ABC):
    """Pluggable evaluation backend used by node executors and the dataflow resolver."""

    @abstractmethod
    def evaluate_expression(self, source: str, scope: ExpressionScope) -> EvaluationResult:
        """Evaluate a single expression."""

    @abstractmethod
    def evaluate_function_body(
        self,
        source: str,
        scope: ExpressionScope,
        log: Callable[..., None] | None = None,
        extras: Mapping[str, Callable[..., Any]] | None = None,
    ) -> EvaluationResult:
        """Run a multi-statement body and return its ``return`` value."""

    @abstractmethod
    def evaluate_template(self, template: str, scope: ExpressionScope) -> EvaluationResult:
        """Substitute ``${expr}`` placeholders."""


class SandboxEngine(ExpressionEngine):
    """AST allow-list interpreter."""

    def evaluate_expression(self, source: str, scope: ExpressionScope) -> EvaluationResult:
        trimmed = (source or "").strip().rstrip(";").strip()
        if not trimmed:
            return EvaluationResult(error="Expression is empty.")
        try:
            tree = ast.parse(trimmed, mode="eval")
            evaluator = _Evaluator(scope.to_names(), _BUILTINS)
            return EvaluationResult(value=evaluator.eval(tree))
        except Exception as e:
            logger.debug(f"Expression failed: {trimmed!r}: {e}")
            return EvaluationResult(error=_describe(e))

    def evaluate_function_body(
        self,
        source: str,
        scope: ExpressionScope,
        log: Callable[..., None] | None = None,
        extras: Mapping[str, Callable[..., Any]] | None = None,
    ) -> EvaluationResult:
        trimmed = (source or "").strip()
        if not trimmed:
            return EvaluationResult(error="Function body is empty.")

        callables: dict[str, Callable[..., Any]] = dict(_BUILTINS)
        callables["log"] = log or (lambda *args: None)
        callables.update(extras or {})

        try:
            tree = ast.parse(trimmed, mode="exec")
            evaluator = _Evaluator(scope.to_names(), callables)
            try:
                evaluator.run_block(tree.body)
            except _Return as returned:
                return EvaluationResult(value=returned.value)
            except (_Break, _Continue):
                return EvaluationResult(error="'break' or 'continue' outside loop")
            return EvaluationResult(value=None)
        except Exception as e:
            logger.debug(f"Function body failed: {e}")
            return EvaluationResult(error=_describe(e))

    def evaluate_template(self, template: str, scope: ExpressionScope) -> EvaluationResult:
        if not (template or "").strip():
            return EvaluationResult(value="")

        parts: list[str] = []
        position = 0
        for match in _TEMPLATE_PATTERN.finditer(template):
            parts.append(template[position : match.start()])
            result = self.evaluate_expression(match.group(1), scope)
            if result.error:
                return EvaluationResult(error=result.error)
            parts.append(_render_template_value(result.value))
            position = match.end()
        parts.append(template[position:])
        return EvaluationResult(value="".join(parts))


_engine: ExpressionEngine = SandboxEngine()


def get_expression_engine() -> ExpressionEngine:
    return _engine


def set_expression_engine(engine: ExpressionEngine) -> None:
    """Swap the evaluation backend process-wide."""
    global _engine
    _engine = engine


def evaluate_expression(source: str, scope: ExpressionScope) -> EvaluationResult:
    return _engine.evaluate_expression(source, scope)


def evaluate_function_body(
    source: str,
    scope: ExpressionScope,
    log: Callable[..., None] | None = None,
    extras: Mapping[str, Callable[..., Any]] | None = None,
) -> EvaluationResult:
    return _engine.evaluate_function_body(source, scope, log=log, extras=extras)


def evaluate_template(template: str, scope: ExpressionScope) -> EvaluationResult:
    return _engine.evaluate_template(template, scope)
