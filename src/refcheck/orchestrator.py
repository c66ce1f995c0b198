"""Trial orchestrator: entry point, round escalation, and result aggregation.

Provides ``run_trials()`` (async) and ``run_trials_sync()`` (sync wrapper)
as the top-level entry points. A run validates its setup, then escalates
complexity from 0 to ``max_complexity``. Round 0 starts with edge-case and
simple-case trials; every round draws ``trials_per_round`` generated trials.
Each trial builds a reference and a submission instance, invokes the
solution on both with the same arguments (reference first), verifies the
pair, and records the verdict.

Trials within a round run concurrently up to ``worker_count``. Each trial
derives its own sub-seed from the run seed and its index, so inputs do not
depend on scheduling.

Code under test never runs in the orchestrating process. Each of the
``worker_count`` worker pairs holds one reference and one submission
process; a trial builds, filters and invokes each side inside that side's
process, and only inputs and outcomes cross the boundary. The two sides
therefore never share class-level state, even when they are the same class.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
import contextlib
import copy
import functools
import hashlib
import inspect
import json
import logging
from random import Random
import time
from typing import Any

from pydantic import BaseModel, ConfigDict

from refcheck.builder import InstanceBuilder
from refcheck.config import apply_env_overrides, configure_logging
from refcheck.descriptors import check_signatures_match
from refcheck.errors import DescriptorError
from refcheck.execution import (
    InvocationTimeout,
    IsolatedWorker,
    PayloadError,
    WorkerFailure,
    invoke,
    invoke_guarded,
    safe_message,
)
from refcheck.generators import GENERATE, GeneratorRegistry, case_combinations, type_name
from refcheck.models import (
    FAILING_VERDICTS,
    EntryPointDescriptor,
    Outcome,
    PeerInstance,
    RunConfig,
    RunResult,
    TrialInputs,
    TrialPhase,
    TrialRecord,
    Verdict,
)
from refcheck.verification import verify

logger = logging.getLogger(__name__)

_SEPARATOR = "=" * 60


# ---------------------------------------------------------------------------
# Seeds
# ---------------------------------------------------------------------------


def derive_seed(*parts: Any) -> int:
    """Derive a 64-bit sub-seed from *parts* (run seed, trial index, ...).

    Stable across processes and Python versions, unlike ``hash()``.
    """
    digest = hashlib.sha256(":".join(str(p) for p in parts).encode()).digest()
    return int.from_bytes(digest[:8], "big")


# ---------------------------------------------------------------------------
# Run state
# ---------------------------------------------------------------------------


class RunAccumulator:
    """Mutable, lock-guarded collector of trial records for one run.

    Created empty at run start, appended to by every trial, and turned into
    a frozen ``RunResult`` by ``finalize()``. Never shared across runs.

    Attributes:
        stopped_early: The fail-fast threshold was reached.
        cancelled: The run was cancelled or hit its deadline.
        gave_up: The precondition discard budget ran out.
    """

    def __init__(self, config: RunConfig) -> None:
        """Initialize an empty accumulator for *config*."""
        self._config = config
        self._lock = asyncio.Lock()
        self._records: list[TrialRecord] = []
        self._failures = 0
        self._discards = 0
        self.stopped_early = False
        self.cancelled = False
        self.gave_up = False

    @property
    def should_stop(self) -> bool:
        """Whether new trials must not start."""
        return self.stopped_early or self.gave_up or self.cancelled

    @property
    def failures(self) -> int:
        return self._failures

    async def record(self, record: TrialRecord) -> None:
        """Append *record* and update the stop conditions."""
        async with self._lock:
            self._records.append(record)
            if record.verdict == Verdict.DISCARDED:
                self._discards += 1
                if self._discards > self._config.max_discards and not self.gave_up:
                    self.gave_up = True
                    logger.warning(
                        "Giving up: %d trials discarded by the precondition",
                        self._discards,
                    )
                return
            if record.verdict not in FAILING_VERDICTS:
                return
            self._failures += 1
            threshold = self._config.fail_fast_threshold
            if threshold is not None and self._failures >= threshold and not self.stopped_early:
                self.stopped_early = True
                logger.warning(
                    "Fail-fast threshold reached (%d failing trials); stopping run",
                    self._failures,
                )

    def finalize(self, duration_seconds: float) -> RunResult:
        """Freeze the collected records into a ``RunResult``."""
        records = sorted(self._records, key=lambda r: (r.inputs.index, r.inputs.attempt))
        counts = dict.fromkeys(Verdict, 0)
        counterexamples: dict[Verdict, TrialRecord] = {}
        for record in records:
            counts[record.verdict] += 1
            if record.verdict in FAILING_VERDICTS:
                counterexamples.setdefault(record.verdict, record)
        return RunResult(
            seed=self._config.seed,
            config=self._config,
            records=records,
            counts=counts,
            counterexamples=counterexamples,
            discarded=self._discards,
            stopped_early=self.stopped_early,
            cancelled=self.cancelled,
            gave_up=self.gave_up,
            duration_seconds=duration_seconds,
        )


class _PlannedTrial(BaseModel):
    """A trial slot before its inputs are materialized."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    index: int
    complexity: int
    phase: TrialPhase
    cases: tuple[Any, ...] | None = None


class _RunContext(BaseModel):
    """Everything a trial needs, resolved once during setup."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    descriptor: EntryPointDescriptor
    config: RunConfig
    registry: GeneratorRegistry
    builder: InstanceBuilder
    time_limit: float | None
    edge_combos: list[tuple[Any, ...]]
    simple_combos: list[tuple[Any, ...]]

    @property
    def needs_receiver(self) -> bool:
        return self.descriptor.standalone or not self.descriptor.is_static

    def is_peer(self, type_key: Any) -> bool:
        return type_key is self.descriptor.reference


# ---------------------------------------------------------------------------
# Setup (configuration tier)
# ---------------------------------------------------------------------------


def _validate_descriptor(descriptor: EntryPointDescriptor) -> None:
    """Check that both classes expose the solution consistently.

    Raises:
        DescriptorError: If the solution is missing on either class, is
            static on one and not the other, or takes different parameters.
    """
    if descriptor.solution is None:
        return
    for role, cls in (("reference", descriptor.reference), ("submission", descriptor.submission)):
        diagnostics = {"role": role, "class": cls.__qualname__, "method": descriptor.solution}
        try:
            raw = inspect.getattr_static(cls, descriptor.solution)
        except AttributeError as exc:
            msg = f"{role} class {cls.__name__} has no method {descriptor.solution!r}"
            raise DescriptorError(msg, diagnostics=diagnostics) from exc
        if not callable(getattr(cls, descriptor.solution)):
            msg = f"{cls.__name__}.{descriptor.solution} is not callable"
            raise DescriptorError(msg, diagnostics=diagnostics)
        is_static = isinstance(raw, (staticmethod, classmethod))
        if is_static != descriptor.is_static:
            expected = "static" if descriptor.is_static else "an instance method"
            msg = f"{cls.__name__}.{descriptor.solution} must be {expected}"
            raise DescriptorError(msg, diagnostics=diagnostics)
    check_signatures_match(descriptor.reference, descriptor.submission, descriptor.solution)


def _prepare_run(
    descriptor: EntryPointDescriptor,
    config: RunConfig,
    registry: GeneratorRegistry | None,
) -> _RunContext:
    """Resolve generators, construction, and case plans before any trial.

    Raises:
        ConfigurationError: On any setup defect.
    """
    _validate_descriptor(descriptor)

    if registry is None:
        registry = GeneratorRegistry(
            custom=descriptor.generators,
            edge_cases=descriptor.edge_cases,
            simple_cases=descriptor.simple_cases,
        )
    peer_types = {descriptor.reference}
    value_types = [t for t in descriptor.parameter_types if t not in peer_types]
    registry.require(value_types)

    builder = InstanceBuilder(
        descriptor.construction,
        default_constructor_unsafe=descriptor.default_constructor_unsafe,
        registry=registry,
    )
    has_peers = len(value_types) != len(descriptor.parameter_types)
    if descriptor.standalone or not descriptor.is_static or has_peers:
        builder.check(descriptor.reference)
        builder.check(descriptor.submission)

    edge_columns: list[tuple[Any, ...]] = []
    simple_columns: list[tuple[Any, ...]] = []
    for type_key in descriptor.parameter_types:
        if type_key in peer_types:
            edge_columns.append(())
            simple_columns.append(())
            continue
        generator = registry.resolve(type_key)
        edge_columns.append(generator.edge_cases)
        simple_columns.append(generator.simple_cases)

    time_limit = (
        descriptor.time_limit_seconds
        if descriptor.time_limit_seconds is not None
        else config.time_limit_seconds
    )
    return _RunContext(
        descriptor=descriptor,
        config=config,
        registry=registry,
        builder=builder,
        time_limit=time_limit,
        edge_combos=case_combinations(edge_columns, config.max_edge_case_trials),
        simple_combos=case_combinations(simple_columns, config.max_simple_case_trials),
    )


# ---------------------------------------------------------------------------
# Trial planning and materialization
# ---------------------------------------------------------------------------


def _plan_round(context: _RunContext, complexity: int, first_index: int) -> list[_PlannedTrial]:
    """Lay out the trial slots of one round, edge and simple cases first."""
    plans: list[_PlannedTrial] = []
    index = first_index
    if complexity == 0:
        for phase, combos in (
            (TrialPhase.EDGE, context.edge_combos),
            (TrialPhase.SIMPLE, context.simple_combos),
        ):
            for combo in combos:
                plans.append(_PlannedTrial(index=index, complexity=0, phase=phase, cases=combo))
                index += 1
    for _ in range(context.config.trials_per_round):
        plans.append(
            _PlannedTrial(index=index, complexity=complexity, phase=TrialPhase.GENERATED)
        )
        index += 1
    return plans


def _materialize(context: _RunContext, plan: _PlannedTrial, attempt: int) -> TrialInputs:
    """Generate the inputs of one trial from its derived sub-seed."""
    seed = derive_seed(context.config.seed, plan.index, attempt)
    rng = Random(seed)
    descriptor = context.descriptor

    receiver_arguments = None
    if context.needs_receiver:
        receiver_arguments = context.builder.receiver_arguments(
            descriptor.reference, plan.complexity, rng
        )

    arguments: list[Any] = []
    for position, type_key in enumerate(descriptor.parameter_types):
        case = plan.cases[position] if plan.cases is not None else GENERATE
        if context.is_peer(type_key):
            arguments.append(
                PeerInstance(complexity=plan.complexity, seed=rng.getrandbits(64))
            )
        elif case is GENERATE:
            arguments.append(context.registry.generate(type_key, plan.complexity, rng))
        else:
            arguments.append(case)

    return TrialInputs(
        index=plan.index,
        complexity=plan.complexity,
        phase=plan.phase,
        seed=seed,
        attempt=attempt,
        arguments=tuple(arguments),
        receiver_arguments=receiver_arguments,
    )


# ---------------------------------------------------------------------------
# Trial execution (runs inside the worker processes)
# ---------------------------------------------------------------------------

_STAGE_SETUP = "setup"
_STAGE_PRECONDITION = "precondition"
_STAGE_SOLUTION = "solution"


class _SideRequest(BaseModel):
    """What one side's worker is asked to do for a trial."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    inputs: TrialInputs
    check_precondition: bool = False


def _setup_call(
    context: _RunContext, cls: type[Any], inputs: TrialInputs
) -> Callable[[], tuple[Any, tuple[Any, ...]]]:
    """Build the receiver and this side's private copy of the arguments.

    Both sides seed their construction from the same derived seed, so
    designated factories see identical random streams.
    """
    builder = context.builder

    def _setup() -> tuple[Any, tuple[Any, ...]]:
        receiver = None
        if context.needs_receiver:
            rng = Random(derive_seed(inputs.seed, "receiver"))
            receiver = builder.build(
                cls,
                inputs.complexity,
                rng,
                copy.deepcopy(inputs.receiver_arguments),
            )
        arguments = []
        for value in copy.deepcopy(inputs.arguments):
            if isinstance(value, PeerInstance):
                value = builder.build(cls, value.complexity, Random(value.seed))
            arguments.append(value)
        return receiver, tuple(arguments)

    return _setup


async def _run_side(
    context: _RunContext, cls: type[Any], setup: Outcome
) -> Outcome:
    """Invoke the solution on one side whose setup already succeeded."""
    receiver, arguments = setup.value
    descriptor = context.descriptor
    if descriptor.standalone or descriptor.solution is None:
        method = None
    elif descriptor.is_static:
        method = getattr(cls, descriptor.solution)
    else:
        method = getattr(receiver, descriptor.solution)
    return await invoke(receiver, method, arguments, context.time_limit)


async def _precondition_holds(context: _RunContext, setup: Outcome) -> bool:
    """Evaluate the precondition on the reference receiver and arguments.

    The precondition sees copies of the arguments. Arguments that cannot be
    copied (peers holding locks, say) are passed as they are.
    """
    precondition = context.descriptor.precondition
    assert precondition is not None
    receiver, arguments = setup.value

    def _arguments() -> tuple[Any, ...]:
        if context.descriptor.standalone:
            return (receiver,)
        copied = copy.deepcopy(arguments)
        return (receiver, *copied) if context.needs_receiver else copied

    prepared = await invoke_guarded(receiver, _arguments, None)
    if prepared.is_normal:
        call_args = prepared.value
    else:
        logger.debug("Precondition arguments cannot be copied; passing originals")
        call_args = (receiver, *arguments) if context.needs_receiver else arguments

    outcome = await invoke(receiver, precondition, call_args, context.time_limit)
    if not outcome.is_normal:
        logger.debug("Precondition did not complete; treating as discard")
        return False
    return bool(outcome.value)


def _side_outcome(setup: Outcome) -> Outcome:
    """Turn a failed setup into the side's outcome."""
    return setup.model_copy(update={"value": None})


async def _serve_side(
    context: _RunContext,
    cls: type[Any],
    request: _SideRequest,
    checkpoint: Callable[[str], None],
) -> Outcome | None:
    """Set up, filter, and invoke one side of a trial.

    Returns:
        The side's outcome, or ``None`` when the precondition rejects the
        inputs.
    """
    setup = await invoke_guarded(None, _setup_call(context, cls, request.inputs), None)
    if not setup.is_normal:
        return _side_outcome(setup)
    if request.check_precondition:
        checkpoint(_STAGE_PRECONDITION)
        if not await _precondition_holds(context, setup):
            return None
    checkpoint(_STAGE_SOLUTION)
    return await _run_side(context, cls, setup)


def _without_instances(outcome: Outcome, exc: Exception) -> Outcome:
    """Drop the receiver and arguments of an outcome that cannot be pickled."""
    logger.debug("Outcome cannot be pickled (%s); dropping receiver and arguments", exc)
    return outcome.model_copy(update={"receiver": None, "arguments": ()})


# ---------------------------------------------------------------------------
# Worker pool
# ---------------------------------------------------------------------------


class _WorkerPair:
    """One reference worker and one submission worker used together.

    Both sides of a trial run on the same pair, so class-level state on the
    two sides has seen the same sequence of trials. When either process is
    lost, both are restarted to keep it that way.
    """

    def __init__(self, context: _RunContext, slot: int) -> None:
        descriptor = context.descriptor
        self.slot = slot
        self.reference = IsolatedWorker(
            f"refcheck-reference-{slot}",
            functools.partial(_serve_side, context, descriptor.reference),
            on_unpicklable=_without_instances,
        )
        self.submission = IsolatedWorker(
            f"refcheck-submission-{slot}",
            functools.partial(_serve_side, context, descriptor.submission),
            on_unpicklable=_without_instances,
        )
        self.desynced = False

    async def close(self) -> None:
        await asyncio.gather(self.reference.close(), self.submission.close())
        self.desynced = False


class _WorkerPool:
    """``worker_count`` worker pairs handed out to trials one at a time."""

    def __init__(self, context: _RunContext) -> None:
        self._pairs = [_WorkerPair(context, slot) for slot in range(context.config.worker_count)]
        self._idle: asyncio.Queue[_WorkerPair] = asyncio.Queue()
        for pair in self._pairs:
            self._idle.put_nowait(pair)

    @contextlib.asynccontextmanager
    async def acquire(self) -> AsyncIterator[_WorkerPair]:
        pair = await self._idle.get()
        try:
            yield pair
        finally:
            self._idle.put_nowait(pair)

    async def close(self) -> None:
        await asyncio.gather(*(pair.close() for pair in self._pairs))


# ---------------------------------------------------------------------------
# Trial scheduling
# ---------------------------------------------------------------------------


async def _call_side(
    pair: _WorkerPair,
    worker: IsolatedWorker,
    request: _SideRequest,
    time_limit: float | None,
) -> Outcome | None:
    """Run one side of a trial on *worker* and map worker failures to outcomes."""
    try:
        return await worker.call(request, time_limit, stage=_STAGE_SETUP)
    except InvocationTimeout as exc:
        pair.desynced = True
        if exc.stage == _STAGE_PRECONDITION:
            logger.debug("Precondition overran its limit; treating as discard")
            return None
        return Outcome.timed_out(duration_seconds=exc.elapsed)
    except WorkerFailure as exc:
        if not worker.is_running:
            pair.desynced = True
        logger.debug("Worker %s failed: %s", worker.name, exc.fault.message)
        return Outcome.faulted(exc.fault)


async def _execute_trial(
    context: _RunContext, pair: _WorkerPair, inputs: TrialInputs
) -> TrialRecord:
    """Run reference then submission on *inputs* and verify the pair."""
    descriptor = context.descriptor
    reference = await _call_side(
        pair,
        pair.reference,
        _SideRequest(inputs=inputs, check_precondition=descriptor.precondition is not None),
        context.time_limit,
    )
    if reference is None:
        record = TrialRecord(
            inputs=inputs,
            verdict=Verdict.DISCARDED,
            detail="Precondition not satisfied",
        )
    else:
        submission = await _call_side(
            pair, pair.submission, _SideRequest(inputs=inputs), context.time_limit
        )
        assert submission is not None
        result = verify(
            reference,
            submission,
            reference.receiver,
            submission.receiver,
            routine=descriptor.verify,
            float_tolerance=context.config.float_tolerance,
        )
        record = TrialRecord(
            inputs=inputs,
            verdict=result.verdict,
            reference=reference,
            submission=submission,
            detail=result.detail,
        )

    if pair.desynced:
        logger.info("Restarting worker pair %d after losing a worker process", pair.slot)
        await pair.close()
    return record


def _input_fault(
    context: _RunContext,
    plan: _PlannedTrial,
    attempt: int,
    detail: str,
    inputs: TrialInputs | None = None,
) -> TrialRecord:
    """Record a trial whose inputs could not be produced or delivered."""
    logger.warning("Trial %d has no usable inputs: %s", plan.index, detail)
    if inputs is None:
        inputs = TrialInputs(
            index=plan.index,
            complexity=plan.complexity,
            phase=plan.phase,
            seed=derive_seed(context.config.seed, plan.index, attempt),
            attempt=attempt,
        )
    return TrialRecord(inputs=inputs, verdict=Verdict.INPUT_FAULTED, detail=detail)


async def _run_trial(
    context: _RunContext,
    pool: _WorkerPool,
    plan: _PlannedTrial,
    accumulator: RunAccumulator,
) -> None:
    """Run one trial slot, retrying generated inputs rejected by the precondition."""
    attempt = 0
    while not accumulator.should_stop:
        try:
            inputs = _materialize(context, plan, attempt)
        except Exception as exc:
            detail = f"Input generation raised {type(exc).__name__}: {safe_message(exc)}"
            await accumulator.record(_input_fault(context, plan, attempt, detail))
            return

        async with pool.acquire() as pair:
            try:
                record = await _execute_trial(context, pair, inputs)
            except PayloadError as exc:
                record = _input_fault(context, plan, attempt, str(exc), inputs)
        await accumulator.record(record)
        if record.verdict != Verdict.DISCARDED or plan.phase != TrialPhase.GENERATED:
            if record.verdict != Verdict.MATCH:
                logger.debug(
                    "Trial %d (%s, complexity=%d): %s %s",
                    plan.index,
                    plan.phase,
                    plan.complexity,
                    record.verdict,
                    record.detail or "",
                )
            return
        attempt += 1


async def _run_round(
    context: _RunContext,
    pool: _WorkerPool,
    plans: list[_PlannedTrial],
    accumulator: RunAccumulator,
) -> None:
    """Run the trials of one round with at most ``worker_count`` in flight."""
    sem = asyncio.Semaphore(context.config.worker_count)

    async def _limited(plan: _PlannedTrial) -> None:
        async with sem:
            if accumulator.should_stop:
                return
            await _run_trial(context, pool, plan, accumulator)

    await asyncio.gather(*(_limited(plan) for plan in plans))


async def _run_rounds(
    context: _RunContext, pool: _WorkerPool, accumulator: RunAccumulator
) -> None:
    """Escalate complexity from 0 to ``max_complexity``."""
    next_index = 0
    max_complexity = context.config.max_complexity
    for complexity in range(max_complexity + 1):
        plans = _plan_round(context, complexity, next_index)
        next_index += len(plans)
        round_start = time.monotonic()
        failures_before = accumulator.failures
        logger.debug(
            "Round %d/%d: %d trials", complexity, max_complexity, len(plans)
        )
        await _run_round(context, pool, plans, accumulator)
        logger.info(
            "Round %d/%d complete in %.2fs | Trials: %d | New failures: %d",
            complexity,
            max_complexity,
            time.monotonic() - round_start,
            len(plans),
            accumulator.failures - failures_before,
        )
        if accumulator.should_stop:
            break


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def _log_run_summary(result: RunResult) -> None:
    """Emit a JSON summary of verdict counts for post-run analysis."""
    summary = {
        "seed": result.seed,
        "counts": {str(k): v for k, v in result.counts.items() if v},
        "stopped_early": result.stopped_early,
        "cancelled": result.cancelled,
        "gave_up": result.gave_up,
    }
    logger.info("Run summary: %s", json.dumps(summary, default=str))


async def run_trials(
    descriptor: EntryPointDescriptor,
    config: RunConfig | None = None,
    *,
    registry: GeneratorRegistry | None = None,
    cancel_event: asyncio.Event | None = None,
) -> RunResult:
    """Compare the submission against the reference over escalating rounds.

    Args:
        descriptor: Resolved entry point, classes, and escape hatches.
        config: Run configuration. Defaults to ``RunConfig()``.
        registry: Generator registry to use instead of one built from the
            descriptor's generators and cases.
        cancel_event: When set, in-flight trials are cancelled and a partial
            result is returned.

    Returns:
        The aggregated ``RunResult``. Partial (``cancelled=True``) when the
        run deadline passes or *cancel_event* is set.

    Raises:
        ConfigurationError: If the setup is defective. Raised before any
            trial executes.
    """
    resolved_config = apply_env_overrides(config if config is not None else RunConfig())
    configure_logging(resolved_config)

    context = _prepare_run(descriptor, resolved_config, registry)

    logger.info("%s", _SEPARATOR)
    logger.info(
        "refcheck: %s vs %s | solution=%s",
        descriptor.reference.__qualname__,
        descriptor.submission.__qualname__,
        descriptor.solution or "<standalone verify>",
    )
    logger.info(
        "Configuration: seed=%d, rounds=0..%d, trials/round=%d, workers=%d, "
        "time_limit=%s, fail_fast=%s",
        resolved_config.seed,
        resolved_config.max_complexity,
        resolved_config.trials_per_round,
        resolved_config.worker_count,
        context.time_limit,
        resolved_config.fail_fast_threshold,
    )
    if descriptor.parameter_types:
        logger.info(
            "Parameters: %s | edge trials=%d, simple trials=%d",
            ", ".join(type_name(t) for t in descriptor.parameter_types),
            len(context.edge_combos),
            len(context.simple_combos),
        )
    logger.info("%s", _SEPARATOR)

    accumulator = RunAccumulator(resolved_config)
    pool = _WorkerPool(context)
    start = time.monotonic()
    runner = asyncio.create_task(_run_rounds(context, pool, accumulator))
    waiters: set[asyncio.Future[Any]] = {runner}
    cancel_waiter = None
    if cancel_event is not None:
        cancel_waiter = asyncio.create_task(cancel_event.wait())
        waiters.add(cancel_waiter)

    try:
        await asyncio.wait(
            waiters,
            timeout=resolved_config.run_timeout_seconds,
            return_when=asyncio.FIRST_COMPLETED,
        )
    finally:
        if cancel_waiter is not None:
            cancel_waiter.cancel()
        if not runner.done():
            accumulator.cancelled = True
            runner.cancel()
            await asyncio.gather(runner, return_exceptions=True)
            logger.warning(
                "Run cancelled after %.1fs; returning partial result",
                time.monotonic() - start,
            )
        await pool.close()

    if not runner.cancelled() and runner.exception() is not None:
        raise runner.exception()  # type: ignore[misc]

    result = accumulator.finalize(time.monotonic() - start)
    _log_run_summary(result)
    logger.info(
        "Run complete | Total: %.2fs | Trials: %d | Failures: %d | Passed: %s",
        result.duration_seconds,
        len(result.records),
        len(result.failures),
        result.passed,
    )
    return result


def run_trials_sync(
    descriptor: EntryPointDescriptor,
    config: RunConfig | None = None,
    *,
    registry: GeneratorRegistry | None = None,
) -> RunResult:
    """Synchronous wrapper for ``run_trials()``.

    Delegates to :func:`run_trials` via ``asyncio.run()``.

    Args:
        descriptor: Resolved entry point, classes, and escape hatches.
        config: Run configuration. Defaults to ``RunConfig()``.
        registry: Optional generator registry override.

    Returns:
        The aggregated ``RunResult``.

    Raises:
        ConfigurationError: If the setup is defective.
    """
    return asyncio.run(run_trials(descriptor, config, registry=registry))
