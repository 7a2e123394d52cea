"""In-process metrics sink: labelled counters and timing observations."""

import logging
import re
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

logger = logging.getLogger(__name__)

_LABEL_RE = re.compile(r'[^a-zA-Z0-9]+')


def normalize_label(value: str) -> str:
    """Reduce a label value to [a-zA-Z0-9_], as metric backends expect."""
    return _LABEL_RE.sub('_', str(value)).strip('_')


@dataclass
class TimingSample:
    seconds: float
    labels: Dict[str, str] = field(default_factory=dict)


class StatsRecorder:
    """
    Collects counters and timings, keyed by "<component>.<name>".

    A recorder created with with_component() shares storage with its parent,
    so one recorder built at startup can be handed to every component.
    """

    def __init__(self, component: str = '', _shared=None):
        self.component = component
        if _shared is None:
            _shared = (threading.Lock(), defaultdict(list), defaultdict(int))
        self._shared = _shared

    def with_component(self, component: str) -> 'StatsRecorder':
        return StatsRecorder(component, self._shared)

    def _key(self, name: str) -> str:
        return f"{self.component}.{name}" if self.component else name

    def observe_timing(self, name: str, seconds: float, **labels: str) -> None:
        lock, timings, _ = self._shared
        sample = TimingSample(seconds, {k: normalize_label(v) for k, v in labels.items()})
        with lock:
            timings[self._key(name)].append(sample)
        logger.debug(f"timing {self._key(name)} {seconds:.4f}s {sample.labels}")

    def increment(self, name: str, **labels: str) -> None:
        lock, _, counters = self._shared
        label_key = tuple(sorted((k, normalize_label(v)) for k, v in labels.items()))
        with lock:
            counters[(self._key(name), label_key)] += 1

    def samples(self, name: str) -> List[TimingSample]:
        """Timing samples recorded under name for this component."""
        lock, timings, _ = self._shared
        with lock:
            return list(timings.get(self._key(name), []))

    def counter(self, name: str, **labels: str) -> int:
        lock, _, counters = self._shared
        label_key: Tuple = tuple(sorted((k, normalize_label(v)) for k, v in labels.items()))
        with lock:
            return counters.get((self._key(name), label_key), 0)
