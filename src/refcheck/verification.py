"""Verifier: decide whether a reference and a submission outcome agree.

Two rules are available. The default compares return values structurally
(``structurally_equal``). A designated verification routine replaces the
default entirely: it receives both full outcomes, receivers included, and
signals disagreement by raising. The two are never combined.

Faults and timeouts pass through as their own verdicts before any value
comparison, so a custom routine never sees a missing return value.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
import logging
import math
import reprlib
from typing import Any

from refcheck.execution import safe_message
from refcheck.models import Outcome, VerificationResult, Verdict

logger = logging.getLogger(__name__)

_SCALARS = (int, float, complex, str, bytes, bool, type(None))

# Values in mismatch details come from code under test; reprlib falls back to
# a placeholder when an object's __repr__ raises.
_VALUE_REPR = reprlib.Repr()
_VALUE_REPR.maxstring = 160
_VALUE_REPR.maxother = 160
_VALUE_REPR.maxlong = 80
_VALUE_REPR.maxlist = _VALUE_REPR.maxtuple = _VALUE_REPR.maxdict = 20
_VALUE_REPR.maxset = _VALUE_REPR.maxfrozenset = 20


# ---------------------------------------------------------------------------
# Structural equality
# ---------------------------------------------------------------------------


def _floats_equal(a: float, b: float, tolerance: float) -> bool:
    if math.isnan(a) and math.isnan(b):
        return True
    if tolerance > 0:
        return math.isclose(a, b, rel_tol=tolerance, abs_tol=tolerance)
    return a == b


def _has_custom_eq(cls: type[Any]) -> bool:
    return cls.__eq__ is not object.__eq__


def _instance_state(obj: Any) -> dict[str, Any]:
    """Attributes of *obj* from ``__dict__`` and any ``__slots__``."""
    state: dict[str, Any] = dict(getattr(obj, "__dict__", {}))
    for klass in type(obj).__mro__:
        for slot in getattr(klass, "__slots__", ()):
            if slot in ("__dict__", "__weakref__") or slot in state:
                continue
            if hasattr(obj, slot):
                state[slot] = getattr(obj, slot)
    return state


def structurally_equal(a: Any, b: Any, *, float_tolerance: float = 0.0) -> bool:
    """Compare two values by structure rather than identity.

    Sequences, mappings and sets compare element-wise; floats treat NaN as
    equal to NaN and honor *float_tolerance*. Objects of one class with a
    custom ``__eq__`` use it. Objects whose classes share a name, such as an
    instance of the reference class and one of the submission class, are
    compared by class name and instance state. Self-referencing structures
    are handled.

    Args:
        a: Reference value.
        b: Submission value.
        float_tolerance: Relative and absolute tolerance for floats.

    Returns:
        True if the values are structurally equal.
    """
    return _equal(a, b, float_tolerance, set())


def _equal(a: Any, b: Any, tolerance: float, active: set[tuple[int, int]]) -> bool:
    if a is b:
        return True

    if isinstance(a, bool) or isinstance(b, bool):
        return type(a) is type(b) and a == b
    if isinstance(a, _SCALARS) and isinstance(b, _SCALARS):
        if isinstance(a, (int, float)) and isinstance(b, (int, float)):
            if isinstance(a, int) and isinstance(b, int):
                return a == b
            try:
                return _floats_equal(float(a), float(b), tolerance)
            except OverflowError:
                return False
        return type(a) is type(b) and a == b

    pair = (id(a), id(b))
    if pair in active:
        return True
    active.add(pair)
    try:
        return _equal_composite(a, b, tolerance, active)
    finally:
        active.discard(pair)


def _equal_composite(
    a: Any, b: Any, tolerance: float, active: set[tuple[int, int]]
) -> bool:
    if isinstance(a, (list, tuple)) or isinstance(b, (list, tuple)):
        if type(a) is not type(b) and not _same_named_class(a, b):
            return False
        if len(a) != len(b):
            return False
        return all(_equal(x, y, tolerance, active) for x, y in zip(a, b, strict=True))

    if isinstance(a, Mapping) and isinstance(b, Mapping):
        if a.keys() != b.keys():
            return False
        return all(_equal(a[key], b[key], tolerance, active) for key in a)

    if isinstance(a, (set, frozenset)) and isinstance(b, (set, frozenset)):
        return type(a) is type(b) and a == b

    if type(a) is type(b):
        if _has_custom_eq(type(a)):
            return bool(a == b)
        return _equal(_instance_state(a), _instance_state(b), tolerance, active)

    if _same_named_class(a, b):
        return _equal(_instance_state(a), _instance_state(b), tolerance, active)

    return False


def _same_named_class(a: Any, b: Any) -> bool:
    return type(a).__name__ == type(b).__name__


# ---------------------------------------------------------------------------
# Verdicts
# ---------------------------------------------------------------------------


def _fault_verdict(reference: Outcome, submission: Outcome) -> VerificationResult | None:
    """Classify pairs in which at least one side did not return normally."""
    if reference.is_timed_out or submission.is_timed_out:
        sides = [
            name
            for name, outcome in (("reference", reference), ("submission", submission))
            if outcome.is_timed_out
        ]
        return VerificationResult(
            verdict=Verdict.TIMEOUT, detail=f"Timed out: {', '.join(sides)}"
        )

    if reference.is_faulted and submission.is_faulted:
        ref_fault = reference.fault
        sub_fault = submission.fault
        assert ref_fault is not None and sub_fault is not None
        if ref_fault.exception_type == sub_fault.exception_type:
            return VerificationResult(
                verdict=Verdict.MATCH,
                detail=f"Both raised {ref_fault.exception_type}",
            )
        return VerificationResult(
            verdict=Verdict.BOTH_FAULTED,
            detail=(
                f"Reference raised {ref_fault.exception_type}, "
                f"submission raised {sub_fault.exception_type}"
            ),
        )

    if reference.is_faulted:
        assert reference.fault is not None
        return VerificationResult(
            verdict=Verdict.REFERENCE_FAULTED,
            detail=f"Reference raised {reference.fault.exception_type}: {reference.fault.message}",
        )

    if submission.is_faulted:
        assert submission.fault is not None
        return VerificationResult(
            verdict=Verdict.SUBMISSION_FAULTED,
            detail=(
                f"Submission raised {submission.fault.exception_type}: "
                f"{submission.fault.message}"
            ),
        )

    return None


def _run_routine(
    routine: Callable[[Outcome, Outcome], Any],
    reference: Outcome,
    submission: Outcome,
) -> VerificationResult:
    try:
        routine(reference, submission)
    except AssertionError as exc:
        return VerificationResult(
            verdict=Verdict.MISMATCH, detail=safe_message(exc) or "Verification routine failed"
        )
    except Exception as exc:
        logger.debug("Verification routine raised %s", type(exc).__name__, exc_info=True)
        return VerificationResult(
            verdict=Verdict.MISMATCH,
            detail=f"Verification routine raised {type(exc).__name__}: {safe_message(exc)}",
        )
    return VerificationResult(verdict=Verdict.MATCH)


def verify(
    reference_outcome: Outcome,
    submission_outcome: Outcome,
    reference_instance: Any = None,
    submission_instance: Any = None,
    *,
    routine: Callable[[Outcome, Outcome], Any] | None = None,
    float_tolerance: float = 0.0,
) -> VerificationResult:
    """Decide the verdict for one trial.

    Args:
        reference_outcome: Outcome of the reference invocation.
        submission_outcome: Outcome of the submission invocation.
        reference_instance: Reference receiver; attached to the outcome
            handed to *routine* when the outcome does not carry one.
        submission_instance: Submission receiver, likewise.
        routine: Optional verification routine replacing default equality.
            Completing normally means match; raising means mismatch.
        float_tolerance: Tolerance for the default float comparison.

    Returns:
        The verdict and an explanation for non-matching verdicts.
    """
    passthrough = _fault_verdict(reference_outcome, submission_outcome)
    if passthrough is not None:
        return passthrough

    if routine is not None:
        if reference_outcome.receiver is None and reference_instance is not None:
            reference_outcome = reference_outcome.model_copy(
                update={"receiver": reference_instance}
            )
        if submission_outcome.receiver is None and submission_instance is not None:
            submission_outcome = submission_outcome.model_copy(
                update={"receiver": submission_instance}
            )
        return _run_routine(routine, reference_outcome, submission_outcome)

    try:
        equal = structurally_equal(
            reference_outcome.value,
            submission_outcome.value,
            float_tolerance=float_tolerance,
        )
    except Exception as exc:
        logger.debug("Comparison raised %s", type(exc).__name__, exc_info=True)
        return VerificationResult(
            verdict=Verdict.MISMATCH,
            detail=f"Comparison raised {type(exc).__name__}: {safe_message(exc)}",
        )
    if equal:
        return VerificationResult(verdict=Verdict.MATCH)
    return VerificationResult(
        verdict=Verdict.MISMATCH,
        detail=(
            f"Expected {_VALUE_REPR.repr(reference_outcome.value)}, "
            f"got {_VALUE_REPR.repr(submission_outcome.value)}"
        ),
    )
