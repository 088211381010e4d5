"""
Fault isolation of test cases.

A case is any picklable object with a ``name`` attribute and a ``run()``
method; ``run()`` may return a dict of op type -> count describing the graph
it produced. In isolated mode each case runs in a spawned child process
watched by the parent:

    child  ── "started" ──→ parent starts the countdown
    child  ── (outcome, message, op_counts) ──→ parent

    exception in run()          → FAILED (SKIPPED for unittest.SkipTest)
    child died / no result      → CRASHED
    countdown expired           → child terminated → HUNG
"""

import enum
import multiprocessing
import re
import time
import unittest
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional

from ..errors import CaseCrashedError, CaseFailedError, CaseHungError
from ..utils.logger import add_file_handler, logger as logging, set_log_level
from .report import OpsSummary

_STARTED = "started"


class TestOutcome(enum.Enum):
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    CRASHED = "crashed"
    HUNG = "hung"


@dataclass
class CaseResult:
    name: str
    outcome: TestOutcome
    message: str = ""
    duration: float = 0.0
    op_counts: Dict[str, int] = field(default_factory=dict)


def _describe_exception(e):
    text = str(e)
    return f"{type(e).__name__}: {text}" if text else f"Unknown failure occurred ({type(e).__name__})"


def execute_case(case):
    """Runs a case in the current process and classifies how it ended."""
    op_counts = {}
    try:
        op_counts = case.run() or {}
        outcome, message = TestOutcome.PASSED, ""
    except unittest.SkipTest as e:
        outcome, message = TestOutcome.SKIPPED, str(e)
    except Exception as e:
        logging.debug(f"Case {case.name} raised", exc_info=True)
        outcome, message = TestOutcome.FAILED, _describe_exception(e)
    if not op_counts:
        op_counts = dict(getattr(case, "op_counts", None) or {})
    return outcome, message, op_counts


def _child_main(case, conn, log_level, log_file=None):
    set_log_level(log_level)
    if log_file:
        add_file_handler(log_file)
    conn.send(_STARTED)
    outcome, message, op_counts = execute_case(case)
    conn.send((outcome.value, message, op_counts))
    conn.close()


class FaultIsolationHarness:
    """
    Runs cases so that a crash or a hang of one case becomes a reportable
    outcome instead of ending the whole run.

    Args:
        timeout: Seconds a case may run once it has started.
        startup_timeout: Seconds a child may take to import and start the case.
        isolate: Run cases in a child process; False runs them inline.
        disabled_patterns: Regexes; matching case names are skipped.
        summary: OpsSummary updated after every finished case.
        log_level: Log level of child processes; defaults to the level of
            the package logger when the case is started.
        log_file: File child processes also write their log to.
    """

    def __init__(
        self,
        timeout: float = 300.0,
        startup_timeout: float = 120.0,
        isolate: bool = True,
        disabled_patterns: Optional[Iterable[str]] = None,
        summary: Optional[OpsSummary] = None,
        log_level=None,
        log_file: Optional[str] = None,
    ):
        self.timeout = timeout
        self.startup_timeout = startup_timeout
        self.isolate = isolate
        self.disabled_patterns = [re.compile(p) for p in (disabled_patterns or [])]
        self.summary = summary if summary is not None else OpsSummary()
        self.log_level = log_level
        self.log_file = log_file

    def is_disabled(self, name):
        return any(pattern.search(name) for pattern in self.disabled_patterns)

    def run(self, case) -> CaseResult:
        """Runs one case and returns its result; never raises for case failures."""
        start_time = time.time()
        if self.is_disabled(case.name):
            result = CaseResult(case.name, TestOutcome.SKIPPED, "Disabled test due to configuration")
        elif self.isolate:
            result = self._run_isolated(case)
        else:
            outcome, message, op_counts = execute_case(case)
            result = CaseResult(case.name, outcome, message, op_counts=op_counts)
        result.duration = time.time() - start_time

        self.summary.update(result.op_counts or {getattr(case, "op_type", "unknown"): 1}, result.outcome)
        log = logging.info if result.outcome in (TestOutcome.PASSED, TestOutcome.SKIPPED) else logging.error
        suffix = f": {result.message}" if result.message else ""
        log(f"[FaultIsolation] {case.name} {result.outcome.value.upper()} ({result.duration:.3f}s){suffix}")
        return result

    def check(self, case) -> CaseResult:
        """
        Runs a case and raises unless it passed.

        Raises:
            unittest.SkipTest: The case was skipped.
            CaseFailedError: The case failed.
            CaseHungError: The case did not finish in time.
            CaseCrashedError: The case process died.
        """
        result = self.run(case)
        if result.outcome is TestOutcome.SKIPPED:
            raise unittest.SkipTest(result.message)
        if result.outcome is TestOutcome.FAILED:
            raise CaseFailedError(result.message)
        if result.outcome is TestOutcome.HUNG:
            raise CaseHungError(f"{case.name}: {result.message}")
        if result.outcome is TestOutcome.CRASHED:
            raise CaseCrashedError(f"{case.name}: {result.message}")
        return result

    def _run_isolated(self, case) -> CaseResult:
        log_level = self.log_level if self.log_level is not None else logging.getEffectiveLevel()
        ctx = multiprocessing.get_context("spawn")
        parent_conn, child_conn = ctx.Pipe(duplex=False)
        process = ctx.Process(
            target=_child_main,
            args=(case, child_conn, log_level, self.log_file),
            name=f"case-{case.name[:40]}",
        )
        process.daemon = True
        process.start()
        child_conn.close()

        try:
            if not parent_conn.poll(self.startup_timeout):
                self._stop(process)
                return CaseResult(
                    case.name, TestOutcome.HUNG, f"Case did not start within {self.startup_timeout}s"
                )
            parent_conn.recv()

            if not parent_conn.poll(self.timeout):
                self._stop(process)
                return CaseResult(case.name, TestOutcome.HUNG, f"Case did not finish within {self.timeout}s")
            outcome, message, op_counts = parent_conn.recv()
            process.join(self.startup_timeout)
            return CaseResult(case.name, TestOutcome(outcome), message, op_counts=op_counts)
        except EOFError:
            process.join(self.startup_timeout)
            return CaseResult(case.name, TestOutcome.CRASHED, self._crash_message(process))
        finally:
            parent_conn.close()
            if process.is_alive():
                self._stop(process)

    @staticmethod
    def _crash_message(process):
        code = process.exitcode
        if code is not None and code < 0:
            return f"Crash happens: case process was killed by signal {-code}"
        return f"Crash happens: case process exited with code {code} without reporting a result"

    @staticmethod
    def _stop(process):
        process.terminate()
        process.join(5)
        if process.is_alive():
            process.kill()
            process.join()
