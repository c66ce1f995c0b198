"""Tests for the instance builder.

Validates the three construction strategies in ``src/refcheck/builder.py``:
zero-argument construction (and its refusal when marked unsafe), designated
factories that never fall back to the default constructor, and construction
from generated ``__init__`` arguments.
"""

from __future__ import annotations

from random import Random

import pytest
from refcheck.builder import InstanceBuilder
from refcheck.errors import ConstructionError
from refcheck.generators import GeneratorRegistry
from refcheck.models import (
    ArgumentConstruction,
    DefaultConstruction,
    DesignatedConstruction,
)

# ---------------------------------------------------------------------------
# Sample classes
# ---------------------------------------------------------------------------


class Plain:
    def __init__(self) -> None:
        self.value = 1


class TrapDefault:
    """Default constructor fails on purpose; ``create`` is the real path."""

    default_calls = 0

    def __init__(self, seed: int | None = None) -> None:
        if seed is None:
            TrapDefault.default_calls += 1
            msg = "use TrapDefault.create"
            raise RuntimeError(msg)
        self.seed = seed

    @classmethod
    def create(cls, complexity: int, rng: Random) -> TrapDefault:
        return cls(rng.randint(0, complexity))


class WrongFactory:
    @staticmethod
    def create(complexity: int, rng: Random) -> str:
        return "not an instance"


class NoArgFactory:
    @classmethod
    def create(cls) -> NoArgFactory:
        return cls()


class Account:
    def __init__(self, owner: str, balance: int) -> None:
        self.owner = owner
        self.balance = balance


class NeedsArgs:
    def __init__(self, size: int) -> None:
        self.size = size


class Untyped:
    def __init__(self, thing) -> None:  # noqa: ANN001
        self.thing = thing


# ===========================================================================
# Default construction
# ===========================================================================


@pytest.mark.unit
class TestDefaultConstruction:
    def test_builds_with_no_arguments(self) -> None:
        builder = InstanceBuilder()
        builder.check(Plain)
        instance = builder.build(Plain, 3, Random(0))
        assert isinstance(instance, Plain)
        assert isinstance(builder.strategy, DefaultConstruction)

    def test_check_rejects_required_arguments(self) -> None:
        with pytest.raises(ConstructionError, match="without arguments"):
            InstanceBuilder().check(NeedsArgs)

    def test_unsafe_refused_at_check(self) -> None:
        builder = InstanceBuilder(default_constructor_unsafe=True)
        with pytest.raises(ConstructionError, match="unsafe") as exc_info:
            builder.check(Plain)
        assert exc_info.value.diagnostics["strategy"] == "default"

    def test_unsafe_refused_at_build(self) -> None:
        builder = InstanceBuilder(default_constructor_unsafe=True)
        with pytest.raises(ConstructionError):
            builder.build(Plain, 0, Random(0))

    def test_no_receiver_arguments(self) -> None:
        assert InstanceBuilder().receiver_arguments(Plain, 3, Random(0)) is None


# ===========================================================================
# Designated construction
# ===========================================================================


@pytest.mark.unit
class TestDesignatedConstruction:
    def test_uses_factory(self) -> None:
        builder = InstanceBuilder(DesignatedConstruction(factory="create"))
        builder.check(TrapDefault)
        instance = builder.build(TrapDefault, 5, Random(1))
        assert isinstance(instance, TrapDefault)
        assert 0 <= instance.seed <= 5

    def test_never_falls_back_to_default(self) -> None:
        """The failing default constructor is not attempted."""
        TrapDefault.default_calls = 0
        builder = InstanceBuilder(
            DesignatedConstruction(factory="create"), default_constructor_unsafe=True
        )
        builder.check(TrapDefault)
        for seed in range(10):
            builder.build(TrapDefault, 2, Random(seed))
        assert TrapDefault.default_calls == 0

    def test_same_seed_same_instance_state(self) -> None:
        builder = InstanceBuilder(DesignatedConstruction(factory="create"))
        first = builder.build(TrapDefault, 50, Random(7))
        second = builder.build(TrapDefault, 50, Random(7))
        assert first.seed == second.seed

    def test_missing_factory(self) -> None:
        builder = InstanceBuilder(DesignatedConstruction(factory="create"))
        with pytest.raises(ConstructionError, match="factory"):
            builder.check(Plain)

    def test_factory_with_wrong_signature(self) -> None:
        builder = InstanceBuilder(DesignatedConstruction(factory="create"))
        with pytest.raises(ConstructionError, match="complexity, random"):
            builder.check(NoArgFactory)

    def test_factory_returning_foreign_object(self) -> None:
        builder = InstanceBuilder(DesignatedConstruction(factory="create"))
        builder.check(WrongFactory)
        with pytest.raises(TypeError, match="expected WrongFactory"):
            builder.build(WrongFactory, 0, Random(0))


# ===========================================================================
# Argument construction
# ===========================================================================


@pytest.mark.unit
class TestArgumentConstruction:
    def test_builds_from_generated_arguments(self) -> None:
        builder = InstanceBuilder(ArgumentConstruction(), registry=GeneratorRegistry())
        builder.check(Account)
        instance = builder.build(Account, 4, Random(3))
        assert isinstance(instance.owner, str)
        assert -4 <= instance.balance <= 4

    def test_receiver_arguments_shared_by_both_sides(self) -> None:
        builder = InstanceBuilder(ArgumentConstruction(), registry=GeneratorRegistry())
        arguments = builder.receiver_arguments(Account, 6, Random(11))
        assert arguments is not None
        first = builder.build(Account, 6, Random(0), arguments)
        second = builder.build(Account, 6, Random(99), arguments)
        assert (first.owner, first.balance) == (second.owner, second.balance) == arguments

    def test_unresolvable_argument_types(self) -> None:
        builder = InstanceBuilder(ArgumentConstruction(), registry=GeneratorRegistry())
        with pytest.raises(ConstructionError, match="Untyped"):
            builder.check(Untyped)

    def test_requires_registry(self) -> None:
        builder = InstanceBuilder(ArgumentConstruction())
        with pytest.raises(ConstructionError, match="registry"):
            builder.check(Account)
