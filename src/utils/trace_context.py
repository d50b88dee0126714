"""
Ingest cycle ids for log correlation.

``SignalPipeline.ingest`` opens one cycle per sample. Every log line
written inside it (EMA update, evaluation, persist, broadcast) carries
the cycle id and the ``instrument/timeframe`` pair:

    with new_cycle(pair="NIFTY50/5m") as cycle_id:
        ...

Both values live in ContextVars, so concurrent ingests on different
pairs never see each other's ids.
"""

from __future__ import annotations

import itertools
import secrets
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

NO_CYCLE = "------"

_cycle_id: ContextVar[Optional[str]] = ContextVar("cycle_id", default=None)
_cycle_pair: ContextVar[Optional[str]] = ContextVar("cycle_pair", default=None)
_started = itertools.count(1)
_last_started = 0


def get_cycle_id() -> str:
    """Id of the active cycle, or ``NO_CYCLE``."""
    return _cycle_id.get() or NO_CYCLE


def get_cycle_pair() -> Optional[str]:
    """``instrument/timeframe`` of the active cycle, if it was opened with one."""
    return _cycle_pair.get()


@contextmanager
def new_cycle(cycle_id: Optional[str] = None, pair: Optional[str] = None) -> Iterator[str]:
    """
    Open a cycle for the block; an enclosing cycle is restored on exit.

    Args:
        cycle_id: Reuse an id (e.g. one received from a feed) instead of a new 6-hex id.
        pair: ``instrument/timeframe`` label for the cycle.
    """
    global _last_started
    _last_started = next(_started)

    id_token = _cycle_id.set(cycle_id or secrets.token_hex(3))
    pair_token = _cycle_pair.set(pair)
    try:
        yield _cycle_id.get()
    finally:
        _cycle_pair.reset(pair_token)
        _cycle_id.reset(id_token)


def cycles_started() -> int:
    """Cycles opened since process start."""
    return _last_started
