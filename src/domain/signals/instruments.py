"""
Instrument registry - the symbols the engine knows by name.

Instruments are administered outside the engine; the registry is the
read-only lookup the pipeline uses to attach a display name to every
fired signal and to skip evaluation for disabled instruments. Samples for
an instrument that is not registered are still processed; its signals
carry the raw id as their name.
"""

from __future__ import annotations

from threading import Lock
from typing import Dict, Iterable, List, Optional

from .models import Instrument


class InstrumentRegistry:
    """
    Instruments keyed by id.

    Example:
        registry = InstrumentRegistry([Instrument("NIFTY50", "NIFTY50", "Nifty 50")])
        registry.resolve("NIFTY50").display_name  # "Nifty 50"
    """

    def __init__(self, instruments: Optional[Iterable[Instrument]] = None) -> None:
        self._instruments: Dict[str, Instrument] = {}
        self._lock = Lock()
        for instrument in instruments or ():
            self.add(instrument)

    def add(self, instrument: Instrument) -> None:
        with self._lock:
            self._instruments[instrument.id] = instrument

    def get(self, instrument_id: str) -> Optional[Instrument]:
        return self._instruments.get(instrument_id)

    def resolve(self, instrument_id: str) -> Instrument:
        """Registered instrument, or a bare one named after the id."""
        instrument = self._instruments.get(instrument_id)
        if instrument is None:
            return Instrument(id=instrument_id, symbol=instrument_id)
        return instrument

    def is_enabled(self, instrument_id: str) -> bool:
        instrument = self._instruments.get(instrument_id)
        return instrument is None or instrument.enabled

    def get_all(self) -> List[Instrument]:
        with self._lock:
            return list(self._instruments.values())

    def __len__(self) -> int:
        return len(self._instruments)

    def __contains__(self, instrument_id: object) -> bool:
        return instrument_id in self._instruments
