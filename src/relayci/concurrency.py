# concurrency.py
from __future__ import annotations

import threading
from collections import deque
from typing import Deque, Dict, List, Optional

from .errors import DefinitionError
from .model import CancelMode
from .run import Run
from .templating import render
from .ui.console import get_console


def render_group_key(template: str, run: Run) -> str:
    event = run.event
    values = {
        "workflow": run.definition.name,
        "ref": event.ref,
        "branch": event.branch or "",
        "tag": event.tag or "",
        "sha": event.sha or "",
        "event": event.effective_kind.value,
    }
    try:
        return render(template, values)
    except KeyError as e:
        raise DefinitionError(
            DefinitionError.Kind.UNKNOWN_REFERENCE,
            f"concurrency group '{template}' references an unknown expression",
            details={"expression": e.args[0]},
        ) from None


class ConcurrencyController:
    """
    Group-key slot table.

    At most one admitted, non-terminal Run holds a key. A newcomer either
    cancels the holder (cancel_in_progress) or waits its turn (queue, FIFO).
    Every table mutation happens under a single lock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._holders: Dict[str, Run] = {}
        self._queues: Dict[str, Deque[Run]] = {}
        self._admitted: Dict[str, threading.Event] = {}

    def register(self, run: Run, group_key: str, mode: CancelMode) -> bool:
        """Place `run` under `group_key`. Returns True when admitted immediately."""
        console = get_console()
        to_cancel: List[Run] = []

        with self._lock:
            run.group = group_key
            self._admitted[run.id] = threading.Event()
            holder = self._holders.get(group_key)
            if holder is not None and holder.is_terminal:
                holder = None

            if holder is None:
                self._admit(group_key, run)
                admitted = True
            elif mode == CancelMode.CANCEL_IN_PROGRESS:
                to_cancel.append(holder)
                to_cancel.extend(self._queues.pop(group_key, deque()))
                self._admit(group_key, run)
                admitted = True
            else:
                self._queues.setdefault(group_key, deque()).append(run)
                admitted = False

        for victim in to_cancel:
            if victim.cancel(f"superseded by run {run.id} in group '{group_key}'"):
                console.print_run_cancelled(victim.id, victim.cancel_reason or "superseded")
            # wake anything blocked waiting on a victim that never got in
            self._signal(victim)
        if not admitted:
            console.print_run_queued(run.id, group_key)
        return admitted

    def release(self, run: Run) -> Optional[Run]:
        """Free the slot held by `run`; admit and return the next queued run, if any."""
        key = run.group
        if key is None:
            return None
        with self._lock:
            self._admitted.pop(run.id, None)
            if self._holders.get(key) is not run:
                queue = self._queues.get(key)
                if queue is not None and run in queue:
                    queue.remove(run)
                return None
            del self._holders[key]

            queue = self._queues.get(key)
            nxt = None
            while queue:
                candidate = queue.popleft()
                if not candidate.is_terminal:
                    nxt = candidate
                    break
            if queue is not None and not queue:
                del self._queues[key]
            if nxt is not None:
                self._admit(key, nxt)
        return nxt

    def wait_admitted(self, run: Run, timeout: Optional[float] = None) -> bool:
        with self._lock:
            event = self._admitted.get(run.id)
        if event is None:
            return True
        return event.wait(timeout)

    def holder(self, group_key: str) -> Optional[Run]:
        with self._lock:
            return self._holders.get(group_key)

    def queued(self, group_key: str) -> List[Run]:
        with self._lock:
            return list(self._queues.get(group_key, ()))

    def _admit(self, key: str, run: Run) -> None:
        self._holders[key] = run
        event = self._admitted.get(run.id)
        if event is not None:
            event.set()

    def _signal(self, run: Run) -> None:
        with self._lock:
            event = self._admitted.get(run.id)
        if event is not None:
            event.set()
