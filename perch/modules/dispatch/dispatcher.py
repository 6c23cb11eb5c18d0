"""
#WHERE
    Owned by the environment façade; every expansion sends its batch of
    edge-cost requests through here.

#WHAT
    Parallel cost dispatcher — a coordinator (the calling process) plus
    persistent worker processes, each holding its own CostEvaluator copy.
    One collective call:

        coordinator ── sync ──→ workers      (barrier: all must answer)
        coordinator ── work ──→ worker k     (contiguous slice k, with indices)
        coordinator evaluates slice 0 locally
        coordinator ←─ result ─ workers      (gather, placed by index)

    Output order is input order for any worker count.  An evaluation error
    on any participant, or a dead pipe, fails the whole call with
    DispatchError chained to its cause; no partial results are returned.
    There are no timeouts: a dispatched batch runs to completion.

#INPUT
    Ordered list of CostComputationInput.

#OUTPUT
    Ordered list of CostComputationOutput.
"""

from __future__ import annotations

import logging
import math
import multiprocessing as mp
import traceback
from typing import Any, List, Optional, Sequence, Tuple

from perch.modules.cost import CostComputationInput, CostComputationOutput, CostEvaluator
from perch.shared.errors import DispatchError, PerchError

log = logging.getLogger(__name__)


def partition(count: int, size: int) -> List[range]:
    """Split ``range(count)`` into *size* contiguous chunks of ``ceil(count / size)``."""
    chunk = max(1, math.ceil(count / size)) if count else 0
    return [range(min(r * chunk, count), min((r + 1) * chunk, count)) for r in range(size)]


def _evaluate_slice(evaluator: CostEvaluator, items: Sequence[Tuple[int, CostComputationInput]]
                    ) -> List[Tuple[int, CostComputationOutput]]:
    return [(index, evaluator.compute_cost(inp)) for index, inp in items]


def _worker_main(conn, evaluator: CostEvaluator, rank: int) -> None:
    while True:
        try:
            message = conn.recv()
        except EOFError:
            break
        tag = message[0]
        if tag == "stop":
            break
        if tag == "sync":
            conn.send(("ready", rank))
        elif tag == "evaluator":
            evaluator = message[1]
            conn.send(("ok", rank))
        elif tag == "work":
            try:
                conn.send(("result", _evaluate_slice(evaluator, message[1])))
            except Exception as exc:
                # perch errors pickle cleanly; anything else travels as text
                cause = exc if isinstance(exc, PerchError) else None
                conn.send(("error", f"{type(exc).__name__}: {exc}", cause, traceback.format_exc()))
        else:
            conn.send(("error", f"unknown message tag {tag!r}", None, ""))
    conn.close()


def _slice_failed(where: str, exc: Exception) -> DispatchError:
    return DispatchError(f"Cost evaluation failed on {where}: {type(exc).__name__}: {exc}")


class LocalDispatcher:
    """Single participant: sequential evaluation, identical output."""

    size = 1

    def __init__(self, evaluator: CostEvaluator):
        self.evaluator = evaluator

    def broadcast(self, evaluator: CostEvaluator) -> None:
        self.evaluator = evaluator

    def compute_costs(self, inputs: Sequence[CostComputationInput]) -> List[CostComputationOutput]:
        try:
            evaluated = _evaluate_slice(self.evaluator, list(enumerate(inputs)))
        except Exception as exc:
            raise _slice_failed("the coordinator", exc) from exc
        return [out for _, out in evaluated]

    def close(self) -> None:
        pass

    def __enter__(self) -> "LocalDispatcher":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class ProcessPoolDispatcher:
    """Coordinator + ``num_workers - 1`` worker processes."""

    def __init__(self, evaluator: CostEvaluator, num_workers: int,
                 start_method: Optional[str] = None):
        if num_workers < 1:
            raise ValueError(f"num_workers must be >= 1, got {num_workers}")
        self.size = num_workers
        self.evaluator = evaluator
        self._workers: List[Tuple[Any, Any]] = []
        ctx = mp.get_context(start_method)
        for rank in range(1, num_workers):
            parent_conn, child_conn = ctx.Pipe(duplex=True)
            proc = ctx.Process(target=_worker_main, args=(child_conn, evaluator, rank),
                               name=f"perch-cost-worker-{rank}", daemon=True)
            proc.start()
            child_conn.close()
            self._workers.append((proc, parent_conn))
        self._closed = False
        log.info("Cost dispatcher started: %d participants", self.size)

    # ── Messaging ────────────────────────────────────────────────────────

    def _send(self, rank: int, conn, message) -> None:
        try:
            conn.send(message)
        except (OSError, EOFError, BrokenPipeError) as exc:
            self._abort()
            raise DispatchError(f"Worker {rank} unreachable: {exc}") from exc

    def _recv(self, rank: int, conn):
        try:
            return conn.recv()
        except (OSError, EOFError) as exc:
            self._abort()
            raise DispatchError(f"Worker {rank} did not respond: {exc}") from exc

    def _expect(self, rank: int, conn, tag: str):
        message = self._recv(rank, conn)
        if message[0] != tag:
            self._abort()
            detail = message[1] if len(message) > 1 else ""
            raise DispatchError(f"Worker {rank} answered {message[0]!r} instead of {tag!r}: {detail}")
        return message

    def _check_open(self) -> None:
        if self._closed:
            raise DispatchError("Dispatcher is closed")

    # ── Collectives ──────────────────────────────────────────────────────

    def barrier(self) -> None:
        self._check_open()
        for rank, (_, conn) in enumerate(self._workers, start=1):
            self._send(rank, conn, ("sync",))
        for rank, (_, conn) in enumerate(self._workers, start=1):
            self._expect(rank, conn, "ready")

    def broadcast(self, evaluator: CostEvaluator) -> None:
        """Replace every participant's evaluator (e.g. after a new observation)."""
        self._check_open()
        self.evaluator = evaluator
        for rank, (_, conn) in enumerate(self._workers, start=1):
            self._send(rank, conn, ("evaluator", evaluator))
        for rank, (_, conn) in enumerate(self._workers, start=1):
            self._expect(rank, conn, "ok")

    def compute_costs(self, inputs: Sequence[CostComputationInput]) -> List[CostComputationOutput]:
        self._check_open()
        inputs = list(inputs)
        if not inputs:
            return []
        self.barrier()

        slices = partition(len(inputs), self.size)
        for rank, (_, conn) in enumerate(self._workers, start=1):
            self._send(rank, conn, ("work", [(i, inputs[i]) for i in slices[rank]]))

        outputs: List[Optional[CostComputationOutput]] = [None] * len(inputs)
        try:
            local = _evaluate_slice(self.evaluator, [(i, inputs[i]) for i in slices[0]])
        except Exception as exc:
            self._abort()
            raise _slice_failed("the coordinator", exc) from exc

        failures = []
        gathered = list(local)
        for rank, (_, conn) in enumerate(self._workers, start=1):
            message = self._recv(rank, conn)
            if message[0] == "result":
                gathered.extend(message[1])
            else:
                failures.append((rank, message))
        if failures:
            self._abort()
            for rank, message in failures:
                log.error("Cost worker %d failed: %s\n%s", rank, message[1], message[3])
            rank, message = failures[0]
            error = DispatchError(f"Cost evaluation failed on worker {rank}: {message[1]}")
            raise error from message[2]

        for index, output in gathered:
            outputs[index] = output
        if any(o is None for o in outputs):
            self._abort()
            raise DispatchError("Gathered results do not cover the whole batch")
        log.debug("Collective evaluated %d edges on %d participants", len(inputs), self.size)
        return outputs  # type: ignore[return-value]

    # ── Lifecycle ────────────────────────────────────────────────────────

    def _abort(self) -> None:
        for proc, conn in self._workers:
            conn.close()
            if proc.is_alive():
                proc.terminate()
            proc.join(timeout=1.0)
        self._workers = []
        self._closed = True

    def close(self) -> None:
        if self._closed:
            return
        for _, conn in self._workers:
            try:
                conn.send(("stop",))
            except (OSError, BrokenPipeError) as exc:
                log.debug("Worker already gone at shutdown: %s", exc)
        for proc, conn in self._workers:
            proc.join(timeout=5.0)
            if proc.is_alive():
                proc.terminate()
                proc.join()
            conn.close()
        self._workers = []
        self._closed = True
        log.info("Cost dispatcher stopped")

    def __enter__(self) -> "ProcessPoolDispatcher":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __del__(self):
        if not getattr(self, "_closed", True):
            self.close()


def make_dispatcher(evaluator: CostEvaluator, num_workers: int = 1,
                    start_method: Optional[str] = None):
    if num_workers <= 1:
        return LocalDispatcher(evaluator)
    return ProcessPoolDispatcher(evaluator, num_workers, start_method=start_method)
