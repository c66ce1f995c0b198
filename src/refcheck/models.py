"""Core data models for refcheck.

Defines the pydantic models, enums, and configuration types shared by the
generator registry, instance builder, execution harness, verifier, and
trial orchestrator. Every model except the run accumulator (see
``refcheck.orchestrator``) is frozen: descriptors are immutable once
resolved, and outcomes are never mutated after capture.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import StrEnum
from random import Random
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

GeneratorFunction = Callable[[int, Random], Any]
"""Signature of every value generator: ``(complexity, rng) -> value``."""


# ---------------------------------------------------------------------------
# Run configuration
# ---------------------------------------------------------------------------


class RunConfig(BaseModel):
    """Run-level knobs for a reference-versus-submission comparison.

    Attributes:
        trials_per_round: Generated trials drawn in each complexity round.
        max_complexity: Highest complexity level; rounds run 0..max inclusive.
        time_limit_seconds: Per-invocation time budget, or ``None`` for none.
        seed: Run seed from which every trial sub-seed is derived.
        fail_fast_threshold: Stop once this many failing verdicts are
            recorded. ``None`` runs to completion.
        worker_count: Maximum number of trials in flight at once.
        run_timeout_seconds: Optional deadline for the whole run.
        max_edge_case_trials: Cap on edge-case trials in the first round.
        max_simple_case_trials: Cap on simple-case trials in the first round.
        max_discards: Precondition rejections tolerated before giving up.
        float_tolerance: Relative tolerance for float comparison (0 = exact).
        counterexample_limit: Size of ``RunResult.first_counterexamples``.
        log_level: Logging level string.
        log_file: Optional log file path.
    """

    model_config = ConfigDict(frozen=True)

    trials_per_round: int = 32
    max_complexity: int = 10
    time_limit_seconds: float | None = 1.0
    seed: int = 0x0403
    fail_fast_threshold: int | None = None
    worker_count: int = 1
    run_timeout_seconds: float | None = None
    max_edge_case_trials: int = 64
    max_simple_case_trials: int = 32
    max_discards: int = 256
    float_tolerance: float = 0.0
    counterexample_limit: int = 5
    log_level: str = "INFO"
    log_file: str | None = None

    @field_validator(
        "trials_per_round",
        "worker_count",
        "counterexample_limit",
    )
    @classmethod
    def _must_be_positive(cls, v: int) -> int:
        """Validate that counts which drive the run are >= 1."""
        if v < 1:
            msg = "Value must be >= 1"
            raise ValueError(msg)
        return v

    @field_validator(
        "max_complexity",
        "max_edge_case_trials",
        "max_simple_case_trials",
        "max_discards",
    )
    @classmethod
    def _must_be_non_negative(cls, v: int) -> int:
        """Validate that caps and the complexity ceiling are >= 0."""
        if v < 0:
            msg = "Value must be >= 0"
            raise ValueError(msg)
        return v

    @field_validator("fail_fast_threshold")
    @classmethod
    def _threshold_positive(cls, v: int | None) -> int | None:
        """Validate that a fail-fast threshold, when set, is >= 1."""
        if v is not None and v < 1:
            msg = "fail_fast_threshold must be >= 1 when set"
            raise ValueError(msg)
        return v

    @field_validator("time_limit_seconds", "run_timeout_seconds")
    @classmethod
    def _limit_positive(cls, v: float | None) -> float | None:
        """Validate that time limits, when set, are strictly positive."""
        if v is not None and v <= 0:
            msg = "Time limits must be > 0 when set"
            raise ValueError(msg)
        return v

    @field_validator("float_tolerance")
    @classmethod
    def _tolerance_non_negative(cls, v: float) -> float:
        """Validate that the float tolerance is >= 0."""
        if v < 0:
            msg = "float_tolerance must be >= 0"
            raise ValueError(msg)
        return v


# ---------------------------------------------------------------------------
# Construction strategies
# ---------------------------------------------------------------------------


class DefaultConstruction(BaseModel):
    """Build instances by calling the class with no arguments."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["default"] = "default"


class DesignatedConstruction(BaseModel):
    """Build instances through a designated factory on each class.

    The factory named here is looked up on both the reference and the
    submission class and called as ``factory(complexity, rng)``. The default
    constructor is never used as a fallback.

    Attributes:
        factory: Attribute name of the factory callable.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["designated"] = "designated"
    factory: str


class ArgumentConstruction(BaseModel):
    """Build instances by calling ``__init__`` with generated arguments.

    The arguments are generated from the reference class's ``__init__``
    annotations once per trial and passed to both classes.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["arguments"] = "arguments"


ConstructionStrategy = Annotated[
    DefaultConstruction | DesignatedConstruction | ArgumentConstruction,
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Entry point and generator descriptors
# ---------------------------------------------------------------------------


class EntryPointDescriptor(BaseModel):
    """A resolved description of the operation under test.

    Produced by a discovery pass (or ``refcheck.descriptors.describe``) and
    owned by the orchestrator for the duration of a run.

    Attributes:
        reference: The trusted reference class.
        submission: The candidate class checked against the reference.
        solution: Name of the solution method, or ``None`` for a standalone
            verification that compares freshly built instances.
        is_static: Whether the solution is called on the class rather than
            on an instance.
        parameter_types: Type of each solution parameter, in order.
        construction: How instances of both classes are built.
        default_constructor_unsafe: Refuse zero-argument construction.
        verify: Optional comparison routine replacing default equality.
        standalone: Whether ``verify`` runs without a solution method.
        precondition: Optional filter over the reference inputs.
        generators: Custom generators keyed by type.
        edge_cases: Edge-case literals keyed by type.
        simple_cases: Simple-case literals keyed by type.
        time_limit_seconds: Per-solution override of the invocation limit.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    reference: type[Any]
    submission: type[Any]
    solution: str | None = None
    is_static: bool = False
    parameter_types: tuple[Any, ...] = ()
    construction: ConstructionStrategy = DefaultConstruction()
    default_constructor_unsafe: bool = False
    verify: Callable[..., Any] | None = None
    standalone: bool = False
    precondition: Callable[..., Any] | None = None
    generators: dict[Any, Callable[..., Any]] = {}
    edge_cases: dict[Any, tuple[Any, ...]] = {}
    simple_cases: dict[Any, tuple[Any, ...]] = {}
    time_limit_seconds: float | None = None

    @model_validator(mode="after")
    def _check_solution_or_standalone(self) -> EntryPointDescriptor:
        """Validate the solution/standalone-verify combination."""
        if self.standalone:
            if self.verify is None:
                msg = "A standalone descriptor requires a verify routine"
                raise ValueError(msg)
            if self.parameter_types:
                msg = "A standalone descriptor takes no parameter types"
                raise ValueError(msg)
        elif self.solution is None:
            msg = "A non-standalone descriptor must name a solution method"
            raise ValueError(msg)
        return self


class GeneratorSource(StrEnum):
    """Where a resolved generator came from."""

    CUSTOM = "custom"
    DEFAULT = "default"


class GeneratorDescriptor(BaseModel):
    """The single generator resolved for one type in one run.

    Attributes:
        type_key: The type this generator produces values for.
        source: Whether the generator is custom or built in.
        generate: The ``(complexity, rng) -> value`` function.
        edge_cases: Literals exercised in the edge-case phase.
        simple_cases: Literals exercised in the simple-case phase.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    type_key: Any
    source: GeneratorSource
    generate: Callable[..., Any]
    edge_cases: tuple[Any, ...] = ()
    simple_cases: tuple[Any, ...] = ()


# ---------------------------------------------------------------------------
# Trial inputs and outcomes
# ---------------------------------------------------------------------------


class TrialPhase(StrEnum):
    """Which phase of a round produced a trial's inputs."""

    EDGE = "edge"
    SIMPLE = "simple"
    GENERATED = "generated"


class PeerInstance(BaseModel):
    """Placeholder for an argument typed as the class under test.

    Each side replaces it with an instance of its own class, built with the
    recorded complexity and seed.
    """

    model_config = ConfigDict(frozen=True)

    complexity: int
    seed: int


class TrialInputs(BaseModel):
    """Fully materialized inputs for one trial.

    Attributes:
        index: Position of the trial in the run.
        complexity: Complexity level that produced the inputs.
        phase: Edge, simple, or generated.
        seed: Sub-seed consumed; ``Random(seed)`` reproduces the inputs.
        attempt: Retry count after precondition discards.
        arguments: Solution arguments, shared by both sides.
        receiver_arguments: Constructor arguments when instances are built
            from generated ``__init__`` arguments.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    index: int
    complexity: int
    phase: TrialPhase
    seed: int
    attempt: int = 0
    arguments: tuple[Any, ...] = ()
    receiver_arguments: tuple[Any, ...] | None = None


class FaultInfo(BaseModel):
    """Description of an exception raised by code under test.

    Attributes:
        exception_type: Simple class name of the exception.
        qualified_type: Module-qualified class name.
        message: ``str()`` of the exception.
        traceback: Formatted traceback text.
    """

    model_config = ConfigDict(frozen=True)

    exception_type: str
    qualified_type: str
    message: str
    traceback: str = ""


class OutcomeKind(StrEnum):
    """Tag of the ``Outcome`` variant."""

    NORMAL_RETURN = "normal_return"
    FAULTED = "faulted"
    TIMED_OUT = "timed_out"


class Outcome(BaseModel):
    """What happened when one side of a trial was invoked.

    Attributes:
        kind: Which variant this is.
        value: Return value (normal returns only).
        fault: Fault description (faulted outcomes only).
        receiver: Instance the operation ran on (``None`` for static calls).
        arguments: Arguments the operation received.
        duration_seconds: Wall-clock time until the outcome was known.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: OutcomeKind
    value: Any = None
    fault: FaultInfo | None = None
    receiver: Any = None
    arguments: tuple[Any, ...] = ()
    duration_seconds: float = 0.0

    @classmethod
    def normal(cls, value: Any, **extra: Any) -> Outcome:
        """Build a ``NormalReturn`` outcome."""
        return cls(kind=OutcomeKind.NORMAL_RETURN, value=value, **extra)

    @classmethod
    def faulted(cls, fault: FaultInfo, **extra: Any) -> Outcome:
        """Build a ``Faulted`` outcome."""
        return cls(kind=OutcomeKind.FAULTED, fault=fault, **extra)

    @classmethod
    def timed_out(cls, **extra: Any) -> Outcome:
        """Build a ``TimedOut`` outcome."""
        return cls(kind=OutcomeKind.TIMED_OUT, **extra)

    @property
    def is_normal(self) -> bool:
        return self.kind == OutcomeKind.NORMAL_RETURN

    @property
    def is_faulted(self) -> bool:
        return self.kind == OutcomeKind.FAULTED

    @property
    def is_timed_out(self) -> bool:
        return self.kind == OutcomeKind.TIMED_OUT


# ---------------------------------------------------------------------------
# Verdicts and results
# ---------------------------------------------------------------------------


class Verdict(StrEnum):
    """Classification of one trial."""

    MATCH = "match"
    MISMATCH = "mismatch"
    REFERENCE_FAULTED = "reference_faulted"
    SUBMISSION_FAULTED = "submission_faulted"
    BOTH_FAULTED = "both_faulted"
    TIMEOUT = "timeout"
    INPUT_FAULTED = "input_faulted"
    DISCARDED = "discarded"


FAILING_VERDICTS: frozenset[Verdict] = frozenset(
    {
        Verdict.MISMATCH,
        Verdict.REFERENCE_FAULTED,
        Verdict.SUBMISSION_FAULTED,
        Verdict.BOTH_FAULTED,
        Verdict.TIMEOUT,
        Verdict.INPUT_FAULTED,
    }
)
"""Verdicts that count toward the fail-fast threshold."""


class VerificationResult(BaseModel):
    """Verdict returned by the verifier, with an optional explanation."""

    model_config = ConfigDict(frozen=True)

    verdict: Verdict
    detail: str | None = None


class TrialRecord(BaseModel):
    """Everything needed to report and reproduce one trial.

    Attributes:
        inputs: The materialized inputs.
        verdict: Classification of the trial.
        reference: Reference outcome (``None`` for discarded trials and for
            inputs that could not be produced).
        submission: Submission outcome, ``None`` in the same cases.
        detail: Explanation of a non-matching verdict.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    inputs: TrialInputs
    verdict: Verdict
    reference: Outcome | None = None
    submission: Outcome | None = None
    detail: str | None = None

    @property
    def index(self) -> int:
        return self.inputs.index


class RunResult(BaseModel):
    """Aggregate outcome of one run.

    Attributes:
        seed: Run seed used.
        config: Effective configuration.
        records: Per-trial records ordered by trial index.
        counts: Number of trials per verdict.
        counterexamples: Earliest trial for each failing verdict.
        discarded: Number of precondition discards.
        stopped_early: Whether the fail-fast threshold ended the run.
        cancelled: Whether the run was cancelled or hit its deadline.
        gave_up: Whether the discard budget ran out.
        duration_seconds: Wall-clock duration of the run.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    seed: int
    config: RunConfig
    records: list[TrialRecord]
    counts: dict[Verdict, int]
    counterexamples: dict[Verdict, TrialRecord]
    discarded: int = 0
    stopped_early: bool = False
    cancelled: bool = False
    gave_up: bool = False
    duration_seconds: float = 0.0

    @property
    def verdicts(self) -> list[Verdict]:
        """Verdict sequence in trial order, discards excluded."""
        return [r.verdict for r in self.records if r.verdict != Verdict.DISCARDED]

    @property
    def failures(self) -> list[TrialRecord]:
        """All failing trial records in trial order."""
        return [r for r in self.records if r.verdict in FAILING_VERDICTS]

    @property
    def first_counterexamples(self) -> list[TrialRecord]:
        """The earliest failing records, up to ``counterexample_limit``."""
        return self.failures[: self.config.counterexample_limit]

    @property
    def passed(self) -> bool:
        """True when the run completed and no trial failed."""
        return not self.cancelled and not self.gave_up and not self.failures
