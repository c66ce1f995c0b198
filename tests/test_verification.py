"""Tests for the verifier.

Validates ``structurally_equal`` and ``verify`` in
``src/refcheck/verification.py``: structural comparison rules, fault and
timeout pass-through, and designated verification routines.
"""

from __future__ import annotations

import math
from typing import Any

from hypothesis import given, settings, strategies as st
import pytest
from refcheck.models import FaultInfo, Outcome, Verdict
from refcheck.verification import structurally_equal, verify

# ---------------------------------------------------------------------------
# Sample classes
# ---------------------------------------------------------------------------


def _reference_point() -> type:
    class Point:
        def __init__(self, x: int, y: int) -> None:
            self.x = x
            self.y = y

    return Point


def _submission_point() -> type:
    class Point:
        def __init__(self, x: int, y: int) -> None:
            self.x = x
            self.y = y

    return Point


class Slotted:
    __slots__ = ("a", "b")

    def __init__(self, a: int, b: int) -> None:
        self.a = a
        self.b = b


class AlwaysEqual:
    def __eq__(self, other: object) -> bool:
        return isinstance(other, AlwaysEqual)

    __hash__ = object.__hash__


class BrokenEquality:
    def __eq__(self, other: object) -> bool:
        msg = "cannot compare"
        raise ValueError(msg)

    __hash__ = object.__hash__


class BrokenRepr:
    def __init__(self, value: int) -> None:
        self.value = value

    def __repr__(self) -> str:
        msg = "no repr"
        raise RuntimeError(msg)


def _fault(name: str) -> FaultInfo:
    return FaultInfo(exception_type=name, qualified_type=f"builtins.{name}", message="boom")


json_values = st.recursive(
    st.none() | st.booleans() | st.integers() | st.text(max_size=5),
    lambda children: st.lists(children, max_size=4)
    | st.dictionaries(st.text(max_size=3), children, max_size=4),
    max_leaves=15,
)


# ===========================================================================
# structurally_equal
# ===========================================================================


@pytest.mark.unit
class TestStructurallyEqual:
    """Structural comparison rules."""

    @given(value=json_values)
    @settings(max_examples=100)
    def test_reflexive(self, value: Any) -> None:
        assert structurally_equal(value, value)

    @given(value=json_values)
    @settings(max_examples=50)
    def test_equal_to_copy(self, value: Any) -> None:
        import copy

        assert structurally_equal(value, copy.deepcopy(value))

    def test_nested_difference(self) -> None:
        assert not structurally_equal({"a": [1, 2, 3]}, {"a": [1, 2, 4]})

    def test_list_vs_tuple(self) -> None:
        assert not structurally_equal([1, 2], (1, 2))

    def test_bool_is_not_int(self) -> None:
        assert not structurally_equal(True, 1)
        assert structurally_equal(False, False)

    def test_int_and_float(self) -> None:
        assert structurally_equal(2, 2.0)
        assert not structurally_equal(2, 2.5)

    def test_large_int_vs_float_overflow(self) -> None:
        assert not structurally_equal(10**400, 1.0)

    def test_nan_equals_nan(self) -> None:
        assert structurally_equal(math.nan, float("nan"))
        assert structurally_equal([math.nan], [math.nan])

    def test_float_tolerance(self) -> None:
        assert not structurally_equal(0.1 + 0.2, 0.3)
        assert structurally_equal(0.1 + 0.2, 0.3, float_tolerance=1e-9)

    def test_sets(self) -> None:
        assert structurally_equal({1, 2}, {2, 1})
        assert not structurally_equal({1}, frozenset({1}))

    def test_mapping_keys_must_match(self) -> None:
        assert not structurally_equal({"a": 1}, {"b": 1})

    def test_same_named_classes_compare_state(self) -> None:
        """Reference and submission instances compare by name and attributes."""
        ref_point = _reference_point()
        sub_point = _submission_point()
        assert structurally_equal(ref_point(1, 2), sub_point(1, 2))
        assert not structurally_equal(ref_point(1, 2), sub_point(1, 3))

    def test_differently_named_classes_differ(self) -> None:
        assert not structurally_equal(Slotted(1, 2), AlwaysEqual())

    def test_slots_compared(self) -> None:
        assert structurally_equal(Slotted(1, 2), Slotted(1, 2))
        assert not structurally_equal(Slotted(1, 2), Slotted(2, 1))

    def test_custom_eq_used(self) -> None:
        assert structurally_equal(AlwaysEqual(), AlwaysEqual())

    def test_cycles(self) -> None:
        first: list[Any] = [1]
        first.append(first)
        second: list[Any] = [1]
        second.append(second)
        assert structurally_equal(first, second)


# ===========================================================================
# verify
# ===========================================================================


@pytest.mark.unit
class TestVerify:
    """Verdict classification."""

    def test_equal_values_match(self) -> None:
        result = verify(Outcome.normal([1, 2]), Outcome.normal([1, 2]))
        assert result.verdict == Verdict.MATCH
        assert result.detail is None

    def test_different_values_mismatch(self) -> None:
        result = verify(Outcome.normal(1), Outcome.normal(2))
        assert result.verdict == Verdict.MISMATCH
        assert "Expected 1, got 2" in (result.detail or "")

    def test_tolerance_forwarded(self) -> None:
        result = verify(Outcome.normal(1.0), Outcome.normal(1.0 + 1e-12), float_tolerance=1e-9)
        assert result.verdict == Verdict.MATCH

    def test_submission_faulted(self) -> None:
        result = verify(Outcome.normal(1), Outcome.faulted(_fault("ValueError")))
        assert result.verdict == Verdict.SUBMISSION_FAULTED
        assert "ValueError" in (result.detail or "")

    def test_reference_faulted(self) -> None:
        result = verify(Outcome.faulted(_fault("KeyError")), Outcome.normal(1))
        assert result.verdict == Verdict.REFERENCE_FAULTED

    def test_same_fault_type_matches(self) -> None:
        result = verify(Outcome.faulted(_fault("KeyError")), Outcome.faulted(_fault("KeyError")))
        assert result.verdict == Verdict.MATCH

    def test_different_fault_types(self) -> None:
        result = verify(Outcome.faulted(_fault("KeyError")), Outcome.faulted(_fault("IndexError")))
        assert result.verdict == Verdict.BOTH_FAULTED

    @pytest.mark.parametrize(
        ("reference", "submission"),
        [
            (Outcome.timed_out(), Outcome.normal(1)),
            (Outcome.normal(1), Outcome.timed_out()),
            (Outcome.faulted(_fault("KeyError")), Outcome.timed_out()),
        ],
    )
    def test_timeout_wins(self, reference: Outcome, submission: Outcome) -> None:
        assert verify(reference, submission).verdict == Verdict.TIMEOUT

    def test_raising_equality_is_mismatch(self) -> None:
        result = verify(Outcome.normal(BrokenEquality()), Outcome.normal(BrokenEquality()))
        assert result.verdict == Verdict.MISMATCH
        assert result.detail == "Comparison raised ValueError: cannot compare"

    def test_raising_repr_still_reported(self) -> None:
        result = verify(Outcome.normal(BrokenRepr(1)), Outcome.normal(BrokenRepr(2)))
        assert result.verdict == Verdict.MISMATCH
        assert "BrokenRepr instance" in (result.detail or "")

    def test_long_values_abbreviated(self) -> None:
        result = verify(Outcome.normal(list(range(1000))), Outcome.normal([]))
        assert result.verdict == Verdict.MISMATCH
        assert "..." in (result.detail or "")
        assert len(result.detail or "") < 300


@pytest.mark.unit
class TestVerificationRoutine:
    """Designated routines replace default equality."""

    def test_routine_completing_is_match(self) -> None:
        result = verify(Outcome.normal(1), Outcome.normal(2), routine=lambda ref, sub: None)
        assert result.verdict == Verdict.MATCH

    def test_failing_routine_is_mismatch_despite_equal_values(self) -> None:
        def _always_fails(reference: Outcome, submission: Outcome) -> None:
            msg = "never satisfied"
            raise AssertionError(msg)

        result = verify(Outcome.normal(1), Outcome.normal(1), routine=_always_fails)
        assert result.verdict == Verdict.MISMATCH
        assert result.detail == "never satisfied"

    def test_routine_raising_other_exception_is_mismatch(self) -> None:
        def _broken(reference: Outcome, submission: Outcome) -> None:
            raise KeyError("missing")

        result = verify(Outcome.normal(1), Outcome.normal(1), routine=_broken)
        assert result.verdict == Verdict.MISMATCH
        assert "KeyError" in (result.detail or "")

    def test_routine_receives_instances(self) -> None:
        seen: dict[str, Any] = {}

        def _capture(reference: Outcome, submission: Outcome) -> None:
            seen["reference"] = reference.receiver
            seen["submission"] = submission.receiver

        verify(
            Outcome.normal(None),
            Outcome.normal(None),
            "ref-instance",
            "sub-instance",
            routine=_capture,
        )
        assert seen == {"reference": "ref-instance", "submission": "sub-instance"}

    def test_routine_not_called_on_fault(self) -> None:
        calls: list[Any] = []
        result = verify(
            Outcome.normal(1),
            Outcome.faulted(_fault("ValueError")),
            routine=lambda ref, sub: calls.append(1),
        )
        assert result.verdict == Verdict.SUBMISSION_FAULTED
        assert calls == []
