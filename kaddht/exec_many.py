"""Run a function on many peers and stop once enough of them succeed."""

from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Callable, Hashable, Sequence

logger = logging.getLogger("kaddht.fullrt")

TICK_INTERVAL = 0.5


def exec_on_many(
    fn: Callable[[threading.Event, Hashable], object],
    peers: Sequence[Hashable],
    wait_fraction: float,
    timeout: float,
    sloppy_exit: bool,
) -> int:
    """Call ``fn(cancel, peer)`` for every peer in its own thread; return the successes.

    A call succeeds when it returns and fails when it raises. ``cancel`` is set once
    ``timeout`` passes or the results are judged good enough; calls should watch it.
    Once a ``wait_fraction`` of the peers succeeded, waiting goes on only while new
    successes keep arriving within each tick. With ``sloppy_exit`` the function
    returns without waiting for the remaining calls.
    """
    total = len(peers)
    if total == 0:
        return 0

    results: queue.Queue[bool] = queue.Queue()
    cancel = threading.Event()
    timer = threading.Timer(timeout, cancel.set)
    timer.daemon = True
    timer.start()

    def run(peer: Hashable) -> None:
        try:
            fn(cancel, peer)
        except Exception as err:
            logger.debug("operation on %r failed: %s", peer, err)
            results.put(False)
        else:
            results.put(True)

    for peer in peers:
        threading.Thread(target=run, args=(peer,), daemon=True).start()

    needed = int(total * wait_fraction)
    done = successes = successes_at_tick = 0
    next_tick: float | None = None
    try:
        while done < total:
            wait = None if next_tick is None else max(0.0, next_tick - time.monotonic())
            try:
                ok = results.get(timeout=wait)
            except queue.Empty:
                next_tick = (next_tick or time.monotonic()) + TICK_INTERVAL
                if successes > successes_at_tick:
                    successes_at_tick = successes
                else:
                    cancel.set()
                    if sloppy_exit:
                        return successes
                continue
            done += 1
            if not ok:
                continue
            successes += 1
            if successes >= needed and next_tick is None:
                next_tick = time.monotonic() + TICK_INTERVAL
                successes_at_tick = successes
            if successes + done >= total:
                cancel.set()
                if sloppy_exit:
                    return successes
        return successes
    finally:
        timer.cancel()
        cancel.set()