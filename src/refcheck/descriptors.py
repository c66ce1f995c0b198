"""Build ``EntryPointDescriptor``s from a pair of classes and a method name.

The core only consumes resolved descriptors. ``describe`` is a convenience
for callers that already know which method to test: it reads the method's
parameter annotations from the reference class and fills in the static
flag. It does not scan classes for markers or decorators.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
import inspect
from typing import Any, get_type_hints

from pydantic import ValidationError

from refcheck.errors import DescriptorError
from refcheck.models import ConstructionStrategy, EntryPointDescriptor, GeneratorFunction


def solution_signature(
    cls: type[Any], method_name: str
) -> tuple[bool, tuple[Any, ...]]:
    """Return ``(is_static, parameter_types)`` for ``cls.method_name``.

    Static methods and class methods are both called on the class and count
    as static.

    Args:
        cls: Class declaring the method.
        method_name: Attribute name of the method.

    Returns:
        The static flag and the annotated parameter types in order.

    Raises:
        DescriptorError: If the method is missing, not callable, variadic,
            or has unannotated parameters.
    """
    diagnostics = {"class": cls.__qualname__, "method": method_name}
    try:
        raw = inspect.getattr_static(cls, method_name)
    except AttributeError as exc:
        msg = f"{cls.__name__} has no method {method_name!r}"
        raise DescriptorError(msg, diagnostics=diagnostics) from exc

    is_static = isinstance(raw, (staticmethod, classmethod))
    method = getattr(cls, method_name)
    if not callable(method):
        msg = f"{cls.__name__}.{method_name} is not callable"
        raise DescriptorError(msg, diagnostics=diagnostics)

    try:
        hints = get_type_hints(method)
    except (NameError, TypeError) as exc:
        msg = f"Annotations of {cls.__name__}.{method_name} cannot be resolved: {exc}"
        raise DescriptorError(msg, diagnostics=diagnostics) from exc

    params = list(inspect.signature(method).parameters.values())
    if not is_static and params:
        # Accessed on the class, an instance method still lists ``self``.
        params = params[1:]

    types: list[Any] = []
    for param in params:
        if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            msg = f"{cls.__name__}.{method_name} must not take variadic parameters"
            raise DescriptorError(msg, diagnostics=diagnostics)
        if param.name not in hints:
            msg = f"Parameter {param.name!r} of {cls.__name__}.{method_name} is not annotated"
            raise DescriptorError(msg, diagnostics=diagnostics)
        types.append(hints[param.name])
    return is_static, tuple(types)


_SELF = object()
"""Stands for "the declaring class" when comparing parameter types."""


def _parameter_shape(
    cls: type[Any], method_name: str
) -> tuple[inspect.Signature, list[tuple[str, Any, Any]]]:
    """Signature of ``cls.method_name`` and its ``(name, kind, type)`` triples.

    ``self`` is dropped for instance methods. A parameter annotated with
    *cls* itself is recorded as the ``_SELF`` marker so that the reference
    and the submission can each refer to their own class. Unannotated or
    unresolvable annotations are recorded as ``None``.
    """
    method = getattr(cls, method_name)
    signature = inspect.signature(method)
    params = list(signature.parameters.values())
    if not isinstance(inspect.getattr_static(cls, method_name), (staticmethod, classmethod)):
        params = params[1:]
    try:
        hints = get_type_hints(method)
    except (NameError, TypeError):
        hints = {}
    shape = []
    for param in params:
        hint = hints.get(param.name)
        shape.append((param.name, param.kind, _SELF if hint is cls else hint))
    return signature.replace(parameters=params), shape


def check_signatures_match(
    reference: type[Any], submission: type[Any], method_name: str
) -> None:
    """Check that both classes declare *method_name* with the same parameters.

    Parameter names, kinds and count must agree. Annotated types must agree
    where both classes annotate a parameter; a parameter typed as the
    declaring class matches the other class's own type.

    Raises:
        DescriptorError: With both signatures in its diagnostics.
    """
    try:
        ref_signature, ref_shape = _parameter_shape(reference, method_name)
        sub_signature, sub_shape = _parameter_shape(submission, method_name)
    except (TypeError, ValueError):
        # Builtins and some C callables expose no signature.
        return

    problem = None
    if len(ref_shape) != len(sub_shape):
        problem = f"takes {len(sub_shape)} parameters, expected {len(ref_shape)}"
    else:
        for (ref_name, ref_kind, ref_type), (sub_name, sub_kind, sub_type) in zip(
            ref_shape, sub_shape, strict=True
        ):
            if ref_name != sub_name or ref_kind != sub_kind:
                problem = (
                    f"parameter {sub_name!r} should be {ref_name!r} ({ref_kind.description})"
                )
                break
            if ref_type is not None and sub_type is not None and ref_type != sub_type:
                problem = f"parameter {sub_name!r} has a different type"
                break
    if problem is None:
        return

    msg = f"{submission.__name__}.{method_name} does not match the reference: {problem}"
    raise DescriptorError(
        msg,
        diagnostics={
            "method": method_name,
            "reference_signature": f"{reference.__qualname__}.{method_name}{ref_signature}",
            "submission_signature": f"{submission.__qualname__}.{method_name}{sub_signature}",
        },
    )


def describe(
    reference: type[Any],
    submission: type[Any],
    solution: str | None = None,
    *,
    construction: ConstructionStrategy | None = None,
    default_constructor_unsafe: bool = False,
    verify: Callable[..., Any] | None = None,
    standalone: bool = False,
    precondition: Callable[..., Any] | None = None,
    generators: dict[Any, GeneratorFunction] | None = None,
    edge_cases: dict[Any, Sequence[Any]] | None = None,
    simple_cases: dict[Any, Sequence[Any]] | None = None,
    time_limit_seconds: float | None = None,
) -> EntryPointDescriptor:
    """Build a descriptor for testing *solution* on *reference* vs *submission*.

    Args:
        reference: Trusted reference class.
        submission: Candidate class.
        solution: Name of the method to compare. Omit for standalone
            verification.
        construction: Construction strategy for both classes.
        default_constructor_unsafe: Refuse zero-argument construction.
        verify: Verification routine replacing default equality.
        standalone: Run *verify* on freshly built instances only.
        precondition: Filter over reference inputs.
        generators: Custom generators keyed by type.
        edge_cases: Edge-case literals keyed by type.
        simple_cases: Simple-case literals keyed by type.
        time_limit_seconds: Per-invocation limit for this solution.

    Returns:
        The resolved descriptor.

    Raises:
        DescriptorError: If the method cannot be resolved or the combination
            of arguments is invalid.
    """
    is_static = False
    parameter_types: tuple[Any, ...] = ()
    if solution is not None:
        is_static, parameter_types = solution_signature(reference, solution)

    fields: dict[str, Any] = {
        "reference": reference,
        "submission": submission,
        "solution": solution,
        "is_static": is_static,
        "parameter_types": parameter_types,
        "default_constructor_unsafe": default_constructor_unsafe,
        "verify": verify,
        "standalone": standalone,
        "precondition": precondition,
        "generators": dict(generators or {}),
        "edge_cases": {k: tuple(v) for k, v in (edge_cases or {}).items()},
        "simple_cases": {k: tuple(v) for k, v in (simple_cases or {}).items()},
        "time_limit_seconds": time_limit_seconds,
    }
    if construction is not None:
        fields["construction"] = construction

    try:
        return EntryPointDescriptor(**fields)
    except ValidationError as exc:
        msg = f"Invalid descriptor for {reference.__name__}: {exc}"
        raise DescriptorError(
            msg, diagnostics={"class": reference.__qualname__, "errors": exc.errors()}
        ) from exc
