"""Value generator registry: default, custom, and edge-case-augmented generators.

Every generator has the signature ``(complexity, rng) -> value``. Built-in
defaults bound magnitude and size by ``complexity`` so that round 0 yields
minimal inputs and later rounds stress larger ones. Custom generators
registered for a type fully override the default for that type, including
when the type appears nested inside a container.

Resolution is cached per registry, and a registry lives for exactly one run,
so each type resolves to exactly one ``GeneratorDescriptor`` per run.
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum
import inspect
import itertools
import logging
from random import Random
import string
import types
from typing import Any, Literal, Union, get_args, get_origin, get_type_hints

from refcheck.errors import GeneratorResolutionError
from refcheck.models import GeneratorDescriptor, GeneratorFunction, GeneratorSource

logger = logging.getLogger(__name__)

_PRINTABLE = string.ascii_letters + string.digits + string.punctuation + " "

NoneType = type(None)


class _Generate:
    """Sentinel marking a parameter without literal cases in a case trial."""

    def __repr__(self) -> str:
        return "<generate>"


GENERATE = _Generate()
"""Placeholder used by ``case_combinations`` for parameters without cases."""


# ---------------------------------------------------------------------------
# Built-in scalar generators
# ---------------------------------------------------------------------------


def default_int(complexity: int, rng: Random) -> int:
    """Uniform integer in ``[-complexity, complexity]``."""
    return rng.randint(-complexity, complexity)


def default_float(complexity: int, rng: Random) -> float:
    """Uniform float in ``[-complexity, complexity]``."""
    return rng.uniform(-complexity, complexity)


def default_bool(complexity: int, rng: Random) -> bool:
    return rng.random() < 0.5


def default_str(complexity: int, rng: Random) -> str:
    """Printable ASCII string of length uniform in ``[0, complexity]``."""
    length = rng.randint(0, complexity)
    return "".join(rng.choice(_PRINTABLE) for _ in range(length))


def default_bytes(complexity: int, rng: Random) -> bytes:
    """Random bytes of length uniform in ``[0, complexity]``."""
    length = rng.randint(0, complexity)
    return bytes(rng.randrange(256) for _ in range(length))


def default_none(complexity: int, rng: Random) -> None:
    return None


_SCALAR_DEFAULTS: dict[Any, GeneratorFunction] = {
    int: default_int,
    float: default_float,
    bool: default_bool,
    str: default_str,
    bytes: default_bytes,
    NoneType: default_none,
}

_SCALAR_EDGE_CASES: dict[Any, tuple[Any, ...]] = {
    int: (0,),
    float: (0.0,),
    bool: (True, False),
    str: ("",),
    bytes: (b"",),
    NoneType: (None,),
}

_SCALAR_SIMPLE_CASES: dict[Any, tuple[Any, ...]] = {
    int: (-1, 1),
    float: (-1.0, 1.0),
    str: (" ", "a"),
}

_SEQUENCE_ORIGINS = (list, Sequence)


def type_name(type_key: Any) -> str:
    """Human-readable name of a type key for diagnostics."""
    if isinstance(type_key, type) and get_origin(type_key) is None:
        return type_key.__name__
    return repr(type_key)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class GeneratorRegistry:
    """Resolves one generator per type for a single run.

    Attributes:
        _custom: User-registered generators keyed by type.
        _edge_cases: User-registered edge cases keyed by type.
        _simple_cases: User-registered simple cases keyed by type.
        _resolved: Cache of resolved descriptors.
    """

    def __init__(
        self,
        custom: dict[Any, GeneratorFunction] | None = None,
        edge_cases: dict[Any, Sequence[Any]] | None = None,
        simple_cases: dict[Any, Sequence[Any]] | None = None,
    ) -> None:
        """Initialize the registry with optional per-type overrides.

        Args:
            custom: Generators that replace the default for their type.
            edge_cases: Edge-case literals that replace the built-in edge
                cases for their type.
            simple_cases: Simple-case literals that replace the built-in
                simple cases for their type.
        """
        self._custom: dict[Any, GeneratorFunction] = dict(custom or {})
        self._edge_cases = {k: tuple(v) for k, v in (edge_cases or {}).items()}
        self._simple_cases = {k: tuple(v) for k, v in (simple_cases or {}).items()}
        self._resolved: dict[Any, GeneratorDescriptor] = {}
        self._in_progress: set[Any] = set()

    def resolve(self, type_key: Any) -> GeneratorDescriptor:
        """Return the generator for *type_key*, resolving it on first use.

        Args:
            type_key: A class or typing construct such as ``list[int]``.

        Returns:
            The run's single ``GeneratorDescriptor`` for the type.

        Raises:
            GeneratorResolutionError: If no generator can be resolved.
        """
        if type_key is None:
            type_key = NoneType
        cached = self._resolved.get(type_key)
        if cached is not None:
            return cached

        if type_key in self._custom:
            generate = self._custom[type_key]
            source = GeneratorSource.CUSTOM
        else:
            generate = self._default_for(type_key)
            source = GeneratorSource.DEFAULT

        descriptor = GeneratorDescriptor(
            type_key=type_key,
            source=source,
            generate=generate,
            edge_cases=self._edge_cases.get(type_key, _default_edge_cases(type_key)),
            simple_cases=self._simple_cases.get(
                type_key, _SCALAR_SIMPLE_CASES.get(type_key, ())
            ),
        )
        self._resolved[type_key] = descriptor
        logger.debug("Resolved %s generator for %s", source, type_name(type_key))
        return descriptor

    def require(self, type_keys: Sequence[Any]) -> list[GeneratorDescriptor]:
        """Resolve every type in *type_keys* or fail with one diagnostic.

        Args:
            type_keys: Types that trials will need values for.

        Returns:
            The resolved descriptors, in the order given.

        Raises:
            GeneratorResolutionError: Listing every unresolvable type.
        """
        resolved: list[GeneratorDescriptor] = []
        missing: list[str] = []
        for type_key in type_keys:
            try:
                resolved.append(self.resolve(type_key))
            except GeneratorResolutionError as exc:
                missing.extend(exc.diagnostics.get("unresolvable", [type_name(type_key)]))
        if missing:
            msg = f"No generator available for: {', '.join(missing)}"
            raise GeneratorResolutionError(msg, diagnostics={"unresolvable": missing})
        return resolved

    def generate(self, type_key: Any, complexity: int, rng: Random) -> Any:
        """Produce one value of *type_key* at *complexity* from *rng*."""
        return self.resolve(type_key).generate(complexity, rng)

    # -- default resolution ------------------------------------------------

    def _unresolvable(self, type_key: Any, reason: str) -> GeneratorResolutionError:
        name = type_name(type_key)
        return GeneratorResolutionError(
            f"No generator available for {name}: {reason}",
            diagnostics={"unresolvable": [name]},
        )

    def _element(self, type_key: Any) -> GeneratorFunction:
        """Generator for a nested type, tolerant of recursive definitions."""
        if type_key in self._in_progress:
            return lambda complexity, rng: self._resolved[type_key].generate(complexity, rng)
        return self.resolve(type_key).generate

    def _default_for(self, type_key: Any) -> GeneratorFunction:
        if type_key is Any or isinstance(type_key, str):
            raise self._unresolvable(type_key, "type is not concrete")

        scalar = _SCALAR_DEFAULTS.get(type_key)
        if scalar is not None:
            return scalar

        origin = get_origin(type_key)
        args = get_args(type_key)

        if origin is Literal:
            choices = list(args)
            return lambda complexity, rng: rng.choice(choices)

        if origin is Union or origin is types.UnionType:
            members = [self._element(arg) for arg in args]
            return lambda complexity, rng: rng.choice(members)(complexity, rng)

        if origin is not None:
            return self._container_default(type_key, origin, args)

        if isinstance(type_key, type) and issubclass(type_key, Enum):
            members = list(type_key)
            if not members:
                raise self._unresolvable(type_key, "enum has no members")
            return lambda complexity, rng: rng.choice(members)

        if isinstance(type_key, type):
            if type_key in (list, tuple, set, frozenset, dict):
                raise self._unresolvable(type_key, "container needs element types")
            return self._annotated_class_default(type_key)

        raise self._unresolvable(type_key, "unsupported type construct")

    def _container_default(
        self, type_key: Any, origin: Any, args: tuple[Any, ...]
    ) -> GeneratorFunction:
        if origin in _SEQUENCE_ORIGINS and len(args) == 1:
            element = self._element(args[0])
            return lambda complexity, rng: [
                element(complexity, rng) for _ in range(rng.randint(0, complexity))
            ]

        if origin is tuple:
            if len(args) == 2 and args[1] is Ellipsis:
                element = self._element(args[0])
                return lambda complexity, rng: tuple(
                    element(complexity, rng) for _ in range(rng.randint(0, complexity))
                )
            fields = [self._element(arg) for arg in args]
            return lambda complexity, rng: tuple(f(complexity, rng) for f in fields)

        if origin in (set, frozenset) and len(args) == 1:
            element = self._element(args[0])
            return lambda complexity, rng: origin(
                element(complexity, rng) for _ in range(rng.randint(0, complexity))
            )

        if origin is dict and len(args) == 2:
            key_gen = self._element(args[0])
            value_gen = self._element(args[1])
            return lambda complexity, rng: {
                key_gen(complexity, rng): value_gen(complexity, rng)
                for _ in range(rng.randint(0, complexity))
            }

        raise self._unresolvable(type_key, "unsupported generic container")

    def _annotated_class_default(self, cls: type[Any]) -> GeneratorFunction:
        """Generate instances of a class from its annotated constructor."""
        try:
            parameters = constructor_parameters(cls)
        except (TypeError, ValueError) as exc:
            raise self._unresolvable(cls, str(exc)) from exc

        self._in_progress.add(cls)
        try:
            generators = [self._element(hint) for _, _, hint in parameters]
        finally:
            self._in_progress.discard(cls)

        def _build(complexity: int, rng: Random) -> Any:
            values = [gen(complexity, rng) for gen in generators]
            return call_with_values(cls, parameters, values)

        return _build


ConstructorParameter = tuple[str, inspect.Parameter, Any]


def constructor_parameters(cls: type[Any]) -> list[ConstructorParameter]:
    """List the annotated constructor parameters of *cls*.

    Variadic parameters are skipped, as are unannotated parameters that have
    a default. Class-level annotations (dataclasses, NamedTuples) and
    ``__init__`` annotations are both consulted.

    Args:
        cls: The class to inspect.

    Returns:
        ``(name, parameter, annotation)`` for each parameter to fill.

    Raises:
        TypeError: If the constructor signature cannot be inspected.
        ValueError: If a required parameter has no annotation.
    """
    try:
        signature = inspect.signature(cls)
    except ValueError as exc:
        msg = f"constructor signature of {cls.__name__} is unavailable"
        raise TypeError(msg) from exc

    hints = _constructor_hints(cls)
    parameters: list[ConstructorParameter] = []
    for name, param in signature.parameters.items():
        if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        if name not in hints:
            if param.default is param.empty:
                msg = f"parameter {name!r} of {cls.__name__} is not annotated"
                raise ValueError(msg)
            continue
        parameters.append((name, param, hints[name]))
    return parameters


def call_with_values(
    cls: type[Any],
    parameters: Sequence[ConstructorParameter],
    values: Sequence[Any],
) -> Any:
    """Instantiate *cls*, passing keyword-only parameters by name."""
    positional: list[Any] = []
    keywords: dict[str, Any] = {}
    for (name, param, _), value in zip(parameters, values, strict=True):
        if param.kind == param.KEYWORD_ONLY:
            keywords[name] = value
        else:
            positional.append(value)
    return cls(*positional, **keywords)


def _constructor_hints(cls: type[Any]) -> dict[str, Any]:
    """Merge class-level and ``__init__`` annotations of *cls*."""
    hints: dict[str, Any] = {}
    try:
        hints.update(get_type_hints(cls))
    except (NameError, TypeError):
        logger.debug("Class annotations of %s could not be resolved", cls.__name__)
    init = getattr(cls, "__init__", None)
    if init is not None and init is not object.__init__:
        try:
            hints.update(get_type_hints(init))
        except (NameError, TypeError):
            logger.debug("__init__ annotations of %s could not be resolved", cls.__name__)
    hints.pop("return", None)
    return hints


def _default_edge_cases(type_key: Any) -> tuple[Any, ...]:
    """Built-in edge cases for *type_key*, or ``()`` when there are none."""
    if type_key in _SCALAR_EDGE_CASES:
        return _SCALAR_EDGE_CASES[type_key]
    origin = get_origin(type_key)
    args = get_args(type_key)
    if origin is Union or origin is types.UnionType:
        return (None,) if NoneType in args else ()
    if origin in _SEQUENCE_ORIGINS:
        return ([],)
    if origin is tuple and len(args) == 2 and args[1] is Ellipsis:
        return ((),)
    if origin is set:
        return (set(),)
    if origin is frozenset:
        return (frozenset(),)
    if origin is dict:
        return ({},)
    return ()


# ---------------------------------------------------------------------------
# Case enumeration
# ---------------------------------------------------------------------------


def case_combinations(
    per_parameter: Sequence[Sequence[Any]],
    limit: int,
) -> list[tuple[Any, ...]]:
    """Enumerate literal-case argument tuples, covering every value first.

    Parameters without cases contribute ``GENERATE``. When the full cartesian
    product fits within *limit* it is returned in product order. Otherwise a
    covering diagonal (trial ``i`` takes value ``i mod len`` of each
    parameter) is emitted first so that every listed value appears at least
    once, followed by unused product entries up to *limit*. The covering
    diagonal is never truncated.

    Args:
        per_parameter: Case values for each parameter, in order.
        limit: Maximum number of combinations beyond the covering diagonal.

    Returns:
        Argument tuples; empty when no parameter has cases.
    """
    if not per_parameter or not any(per_parameter):
        return []
    columns = [list(values) if values else [GENERATE] for values in per_parameter]

    total = 1
    for column in columns:
        total *= len(column)
    if total <= limit:
        return list(itertools.product(*columns))

    width = max(len(column) for column in columns)
    diagonal = [tuple(column[i % len(column)] for column in columns) for i in range(width)]
    combos = list(diagonal)
    seen = {_combo_key(combo) for combo in diagonal}
    for combo in itertools.product(*columns):
        if len(combos) >= max(limit, width):
            break
        key = _combo_key(combo)
        if key in seen:
            continue
        seen.add(key)
        combos.append(combo)
    return combos


def _combo_key(combo: tuple[Any, ...]) -> tuple[str, ...]:
    return tuple(repr(value) for value in combo)
