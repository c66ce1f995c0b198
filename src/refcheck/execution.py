"""Execution harness: time-bounded invocation of code under test.

``invoke`` runs one operation in the current process and captures the full
outcome (return value, fault, or timeout) as an ``Outcome``. Nothing raised
by the code under test escapes it. Coroutine functions are cancelled when
their time limit expires; a synchronous call that only completes after its
limit is reported as timed out.

``IsolatedWorker`` hosts code under test in a forked child process and
serves requests there. Every request stage runs under a deadline enforced
from the parent: a stage that overruns is abandoned and the child is killed
(SIGTERM, escalating to SIGKILL after a grace period) and replaced on the
next request. A hung invocation therefore never keeps running next to the
trials that follow it. Class-level state lives in the child, so each worker
owns its own copy of the classes it hosts.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
import contextlib
import inspect
import logging
import multiprocessing
import pickle
import signal
import time
import traceback
from typing import Any

from refcheck.models import FaultInfo, Outcome

logger = logging.getLogger(__name__)

_SIGKILL_GRACE_SECONDS = 0.5
_STAGE_MARGIN_SECONDS = 0.1
_POLL_INTERVAL_SECONDS = 0.01

Checkpoint = Callable[[str], None]
"""Called by a worker handler to report that it entered a new stage."""

Handler = Callable[[Any, Checkpoint], Awaitable[Any]]
"""Request handler run inside the worker process: ``(payload, checkpoint)``."""


# ---------------------------------------------------------------------------
# Fault capture
# ---------------------------------------------------------------------------


def safe_message(exc: BaseException) -> str:
    """``str(exc)``, or a placeholder when the exception cannot be printed."""
    try:
        return str(exc)
    except Exception:
        return f"<unprintable {type(exc).__name__}>"


def describe_fault(exc: BaseException) -> FaultInfo:
    """Build a ``FaultInfo`` from an exception raised by code under test.

    Args:
        exc: The exception, with its traceback attached.

    Returns:
        Type names, message, and formatted traceback.
    """
    exc_type = type(exc)
    return FaultInfo(
        exception_type=exc_type.__name__,
        qualified_type=f"{exc_type.__module__}.{exc_type.__qualname__}",
        message=safe_message(exc),
        traceback="".join(traceback.format_exception(exc)),
    )


async def _await_coroutine(
    method: Callable[..., Any],
    args: Sequence[Any],
    time_limit: float | None,
) -> tuple[Any, FaultInfo | None, bool]:
    """Await a coroutine function under *time_limit*.

    Returns:
        ``(value, fault, timed_out)``. A ``TimeoutError`` raised by the
        coroutine itself is a fault, not a timeout.
    """
    try:
        async with asyncio.timeout(time_limit) as scope:
            value = await method(*args)
    except TimeoutError as exc:
        if scope.expired():
            return None, None, True
        return None, describe_fault(exc), False
    except Exception as exc:
        return None, describe_fault(exc), False
    return value, None, False


async def invoke(
    instance: Any,
    method: Callable[..., Any] | None,
    args: Sequence[Any],
    time_limit: float | None,
) -> Outcome:
    """Invoke *method* with *args* and capture the outcome.

    Synchronous callables run inline and cannot be interrupted; callers that
    need hung calls stopped run them inside an ``IsolatedWorker``.

    Args:
        instance: Receiver the method is bound to, or ``None`` for static
            calls. Recorded on the outcome for verification routines.
        method: Callable to invoke. ``None`` means there is nothing to run
            (standalone verification) and yields a normal ``None`` return.
        args: Positional arguments.
        time_limit: Seconds before the invocation is reported as timed out,
            or ``None`` for no limit.

    Returns:
        A ``NormalReturn``, ``Faulted``, or ``TimedOut`` outcome.
    """
    arguments = tuple(args)
    extra: dict[str, Any] = {"receiver": instance, "arguments": arguments}
    if method is None:
        return Outcome.normal(None, **extra)

    start = time.monotonic()
    if inspect.iscoroutinefunction(method):
        value, fault, timed_out = await _await_coroutine(method, arguments, time_limit)
    else:
        value, fault = None, None
        try:
            value = method(*arguments)
        except BaseException as exc:  # noqa: BLE001
            fault = describe_fault(exc)
        elapsed = time.monotonic() - start
        timed_out = time_limit is not None and elapsed > time_limit
    extra["duration_seconds"] = time.monotonic() - start

    if timed_out:
        logger.debug(
            "Invocation of %s timed out after %.3fs",
            getattr(method, "__qualname__", method),
            extra["duration_seconds"],
        )
        return Outcome.timed_out(**extra)
    if fault is not None:
        return Outcome.faulted(fault, **extra)
    return Outcome.normal(value, **extra)


async def invoke_guarded(
    instance: Any,
    call: Callable[[], Any],
    time_limit: float | None,
) -> Outcome:
    """Run a zero-argument *call* (construction, precondition) under the harness.

    Same capture rules as ``invoke``; the outcome's receiver is *instance*.
    """
    return await invoke(instance, call, (), time_limit)


# ---------------------------------------------------------------------------
# Worker processes
# ---------------------------------------------------------------------------


class WorkerError(Exception):
    """Base class for failures of a worker process rather than of its request."""


class PayloadError(WorkerError):
    """A request could not be serialized for the worker process."""


class InvocationTimeout(WorkerError):
    """A request stage overran its deadline; the worker was killed.

    Attributes:
        stage: Stage the worker last reported before the deadline passed.
        elapsed: Seconds spent in that stage.
    """

    def __init__(self, stage: str, elapsed: float) -> None:
        super().__init__(f"Stage {stage!r} overran its deadline after {elapsed:.3f}s")
        self.stage = stage
        self.elapsed = elapsed


class WorkerFailure(WorkerError):
    """The worker died or its reply could not be transferred.

    Attributes:
        fault: Description of what went wrong, usable as a ``Faulted`` outcome.
    """

    def __init__(self, fault: FaultInfo) -> None:
        super().__init__(fault.message)
        self.fault = fault


def _send(conn: Any, message: Any) -> None:
    conn.send_bytes(pickle.dumps(message))


def _send_reply(
    conn: Any,
    reply: Any,
    on_unpicklable: Callable[[Any, Exception], Any] | None,
) -> None:
    try:
        data = pickle.dumps(("reply", reply))
    except Exception as exc:
        if on_unpicklable is None:
            _send(conn, ("failed", describe_fault(exc)))
            return
        try:
            data = pickle.dumps(("reply", on_unpicklable(reply, exc)))
        except Exception as retry_exc:
            _send(conn, ("failed", describe_fault(retry_exc)))
            return
    conn.send_bytes(data)


def _worker_main(
    conn: Any,
    parent_end: Any,
    handler: Handler,
    on_unpicklable: Callable[[Any, Exception], Any] | None,
) -> None:
    """Serve requests until told to stop or the parent goes away."""
    parent_end.close()
    signal.signal(signal.SIGTERM, signal.SIG_DFL)
    # The fork copied the parent's running-loop marker and its signal wakeup
    # fd; Python 3.11 does not clear them in the child.
    asyncio._set_running_loop(None)
    with contextlib.suppress(ValueError):
        signal.set_wakeup_fd(-1)

    def _checkpoint(stage: str) -> None:
        _send(conn, ("stage", stage))

    with asyncio.Runner() as runner:
        while True:
            try:
                raw = conn.recv_bytes()
            except EOFError:
                return
            try:
                payload = pickle.loads(raw)
            except Exception as exc:
                _send(conn, ("failed", describe_fault(exc)))
                continue
            if payload is None:
                return
            try:
                reply = runner.run(handler(payload, _checkpoint))
            except BaseException as exc:  # noqa: BLE001
                _send(conn, ("failed", describe_fault(exc)))
                continue
            _send_reply(conn, reply, on_unpicklable)


def _exit_fault(stage: str, exitcode: int | None) -> FaultInfo:
    message = f"Worker process exited with code {exitcode} during {stage}"
    return FaultInfo(
        exception_type="WorkerExited",
        qualified_type=f"{__name__}.WorkerExited",
        message=message,
    )


class IsolatedWorker:
    """A forked child process that runs requests for one side of a trial.

    The child is started lazily on the first request and inherits the
    parent's memory, so handlers and the classes they use need not be
    importable or picklable. Payloads and replies cross the process boundary
    pickled. A worker serves one request at a time.

    Attributes:
        name: Process name, used in log messages.
        starts: Number of child processes started so far.
    """

    def __init__(
        self,
        name: str,
        handler: Handler,
        *,
        on_unpicklable: Callable[[Any, Exception], Any] | None = None,
    ) -> None:
        """Initialize a worker that will serve requests with *handler*.

        Args:
            name: Process name.
            handler: Coroutine function run in the child for each payload.
            on_unpicklable: Maps a reply that cannot be pickled (and the
                error) to a substitute reply.
        """
        self.name = name
        self._handler = handler
        self._on_unpicklable = on_unpicklable
        self._process: Any = None
        self._conn: Any = None
        self.starts = 0

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.is_alive()

    def _start(self) -> None:
        context = multiprocessing.get_context("fork")
        parent_end, child_end = context.Pipe()
        process = context.Process(
            target=_worker_main,
            args=(child_end, parent_end, self._handler, self._on_unpicklable),
            name=self.name,
            daemon=True,
        )
        process.start()
        child_end.close()
        self._process, self._conn = process, parent_end
        self.starts += 1
        logger.debug("Started worker %s (pid %d)", self.name, process.pid)

    async def _receive(self, timeout: float | None) -> bytes:
        conn = self._conn
        if not conn.poll():
            loop = asyncio.get_running_loop()
            ready: asyncio.Future[None] = loop.create_future()

            def _on_readable() -> None:
                if not ready.done():
                    ready.set_result(None)

            loop.add_reader(conn.fileno(), _on_readable)
            try:
                await asyncio.wait_for(ready, timeout)
            finally:
                loop.remove_reader(conn.fileno())
        return conn.recv_bytes()

    async def call(
        self, payload: Any, time_limit: float | None, *, stage: str = "setup"
    ) -> Any:
        """Send *payload* to the child and wait for its reply.

        Each stage the handler reports through its checkpoint gets a fresh
        deadline of *time_limit* plus a small transfer margin.

        Args:
            payload: Picklable request for the handler.
            time_limit: Per-stage limit in seconds, or ``None`` for none.
            stage: Name of the stage the request starts in.

        Returns:
            The handler's reply.

        Raises:
            PayloadError: If *payload* cannot be pickled. The worker is left
                untouched.
            InvocationTimeout: If a stage overran; the child was killed.
            WorkerFailure: If the child died or its reply was unusable.
        """
        try:
            data = pickle.dumps(payload)
        except Exception as exc:
            msg = f"Request for {self.name} cannot be serialized: {safe_message(exc)}"
            raise PayloadError(msg) from exc

        if not self.is_running:
            await self._terminate()
            self._start()
        deadline = None if time_limit is None else time_limit + _STAGE_MARGIN_SECONDS
        stage_start = time.monotonic()
        try:
            try:
                self._conn.send_bytes(data)
                while True:
                    raw = await self._receive(deadline)
                    try:
                        kind, body = pickle.loads(raw)
                    except Exception as exc:
                        raise WorkerFailure(describe_fault(exc)) from exc
                    if kind == "stage":
                        stage, stage_start = body, time.monotonic()
                        continue
                    if kind == "failed":
                        raise WorkerFailure(body)
                    return body
            except TimeoutError:
                elapsed = time.monotonic() - stage_start
                logger.warning(
                    "Worker %s overran stage %r after %.2fs; killing it",
                    self.name,
                    stage,
                    elapsed,
                )
                await self._terminate()
                raise InvocationTimeout(stage, elapsed) from None
            except (EOFError, OSError) as exc:
                process = self._process
                await self._terminate()
                exitcode = process.exitcode if process is not None else None
                raise WorkerFailure(_exit_fault(stage, exitcode)) from exc
        except asyncio.CancelledError:
            self._kill_now()
            raise

    async def _terminate(self, *, graceful: bool = False) -> None:
        """Stop the child: wait (if *graceful*), then SIGTERM, then SIGKILL."""
        process, conn = self._process, self._conn
        self._process = self._conn = None
        if conn is not None:
            conn.close()
        if process is None:
            return

        steps: list[Callable[[], None] | None] = [process.terminate, process.kill]
        if graceful:
            steps.insert(0, None)
        for step in steps:
            if not process.is_alive():
                break
            if step is not None:
                with contextlib.suppress(OSError):
                    step()
            give_up = time.monotonic() + _SIGKILL_GRACE_SECONDS
            while process.is_alive() and time.monotonic() < give_up:
                await asyncio.sleep(_POLL_INTERVAL_SECONDS)
        process.join(_SIGKILL_GRACE_SECONDS)

    def _kill_now(self) -> None:
        process, conn = self._process, self._conn
        self._process = self._conn = None
        if conn is not None:
            conn.close()
        if process is not None:
            with contextlib.suppress(OSError):
                process.kill()
            process.join(_SIGKILL_GRACE_SECONDS)

    async def close(self) -> None:
        """Ask the child to exit, killing it if it does not."""
        if self._conn is not None:
            with contextlib.suppress(OSError):
                self._conn.send_bytes(pickle.dumps(None))
        await self._terminate(graceful=True)
