from __future__ import annotations

import logging
import threading
import time
from collections import deque
from statistics import mean
from typing import Any, Deque, Dict, Iterable, Optional, Tuple

# ---------------- Utilities ----------------

LabelKey = Tuple[Tuple[str, str], ...]  # sorted tuple of (k,v)
SeriesKey = Tuple[str, LabelKey]


def _labels_key(labels: Dict[str, Any] | None) -> LabelKey:
    if not labels:
        return tuple()
    return tuple(sorted((str(k), str(v)) for k, v in labels.items()))


def _pct(sorted_vals: Iterable[float], q: float) -> float:
    vals = list(sorted_vals)
    if not vals:
        return 0.0
    idx = max(0, min(len(vals) - 1, int(round((len(vals) - 1) * q))))
    return vals[idx]


# ---------------- Series ----------------

class _Value:
    """Counter or gauge cell."""
    def __init__(self) -> None:
        self._v = 0.0
        self._lock = threading.Lock()

    def add(self, n: float) -> None:
        with self._lock:
            self._v += n

    def set(self, v: float) -> None:
        with self._lock:
            self._v = float(v)

    def value(self) -> float:
        with self._lock:
            return self._v


class Histogram:
    def __init__(self, maxlen: int = 2048):
        self._values: Deque[float] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def observe(self, v: float) -> None:
        with self._lock:
            self._values.append(float(v))

    def snapshot(self) -> Dict[str, float]:
        with self._lock:
            vals = sorted(self._values)
        if not vals:
            return {"count": 0, "min": 0.0, "max": 0.0, "mean": 0.0, "p50": 0.0, "p90": 0.0, "p99": 0.0}
        return {
            "count": float(len(vals)),
            "min": vals[0],
            "max": vals[-1],
            "mean": mean(vals),
            "p50": _pct(vals, 0.50),
            "p90": _pct(vals, 0.90),
            "p99": _pct(vals, 0.99),
        }


class _Registry:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self.counters: Dict[SeriesKey, _Value] = {}
        self.gauges: Dict[SeriesKey, _Value] = {}
        self.hists: Dict[SeriesKey, Histogram] = {}

    def _get(self, table: Dict[SeriesKey, Any], factory, name: str, labels: Dict[str, Any] | None):
        key = (name, _labels_key(labels))
        with self._lock:
            m = table.get(key)
            if m is None:
                m = table[key] = factory()
            return m

    def counter(self, name: str, labels: Dict[str, Any] | None) -> _Value:
        return self._get(self.counters, _Value, name, labels)

    def gauge(self, name: str, labels: Dict[str, Any] | None) -> _Value:
        return self._get(self.gauges, _Value, name, labels)

    def hist(self, name: str, labels: Dict[str, Any] | None) -> Histogram:
        return self._get(self.hists, Histogram, name, labels)

    def items(self):
        with self._lock:
            return list(self.counters.items()), list(self.gauges.items()), list(self.hists.items())

    def clear(self) -> None:
        with self._lock:
            self.counters.clear()
            self.gauges.clear()
            self.hists.clear()


_REG = _Registry()

# ---------------- Public API ----------------

def inc(name: str, n: float = 1.0, **labels: Any) -> None:
    _REG.counter(name, labels).add(n)


def gauge_set(name: str, v: float, **labels: Any) -> None:
    _REG.gauge(name, labels).set(v)


def observe_hist(name: str, v: float, **labels: Any) -> None:
    _REG.hist(name, labels).observe(v)


def counter_value(name: str, **labels: Any) -> float:
    """Current value of one counter series (0.0 if never incremented)."""
    m = _REG.counters.get((name, _labels_key(labels)))
    return 0.0 if m is None else m.value()


def reset() -> None:
    _REG.clear()


class Timer:
    """Context manager for measuring latency and reporting into a histogram."""
    def __init__(self, hist_name: str, **labels: Any) -> None:
        self.hist_name = hist_name
        self.labels = labels
        self._t0 = 0.0

    def __enter__(self):
        self._t0 = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb):
        observe_hist(self.hist_name, (time.perf_counter() - self._t0) * 1000.0, **self.labels)
        return False


# ---------------- Exporter (log every N seconds) ----------------

class _Exporter(threading.Thread):
    def __init__(self, interval_sec: float = 5.0, json_mode: bool = False, logger: Optional[logging.Logger] = None):
        super().__init__(name="metrics-exporter", daemon=True)
        self.interval = float(interval_sec)
        self.json_mode = bool(json_mode)
        self.log = logger or logging.getLogger("wshandler.metrics")
        self._stop_evt = threading.Event()

    def run(self) -> None:
        while not self._stop_evt.is_set():
            t0 = time.time()
            self.emit_snapshot()
            self._stop_evt.wait(max(0.5, self.interval - (time.time() - t0)))

    def stop(self, timeout: float = 1.0) -> None:
        self._stop_evt.set()
        self.join(timeout=timeout)

    def emit_snapshot(self) -> None:
        snap = snapshot_all()
        if self.json_mode:
            for kind in ("counters", "gauges", "hists"):
                for row in snap[kind]:
                    self.log.info({"type": kind, **row})
            return
        for row in snap["counters"]:
            self.log.info(f"[ctr] {row['name']} {row['labels']} value={row['value']:.0f}")
        for row in snap["gauges"]:
            self.log.info(f"[gauge] {row['name']} {row['labels']} value={row['value']:.3f}")
        for row in snap["hists"]:
            self.log.info(
                f"[hist] {row['name']} {row['labels']} "
                f"n={int(row['count'])} p50={row['p50']:.3f} p99={row['p99']:.3f} max={row['max']:.3f}"
            )


_EXPORTER: Optional[_Exporter] = None


def start_exporter(interval_sec: float = 5.0, json_mode: bool = False, logger: Optional[logging.Logger] = None) -> None:
    global _EXPORTER
    if _EXPORTER is not None:
        return
    _EXPORTER = _Exporter(interval_sec=interval_sec, json_mode=json_mode, logger=logger)
    _EXPORTER.start()


def stop_exporter(timeout: float = 1.0) -> None:
    global _EXPORTER
    if _EXPORTER is not None:
        _EXPORTER.stop(timeout=timeout)
        _EXPORTER = None


# ---------------- Snapshot helpers for tests ----------------

def snapshot_all() -> dict:
    """Return a snapshot of current metrics (for tests)."""
    counters, gauges, hists = _REG.items()
    return {
        "counters": [{"name": n, "labels": dict(lb), "value": m.value()} for (n, lb), m in counters],
        "gauges": [{"name": n, "labels": dict(lb), "value": m.value()} for (n, lb), m in gauges],
        "hists": [{"name": n, "labels": dict(lb), **m.snapshot()} for (n, lb), m in hists],
    }


def force_emit(logger: Optional[logging.Logger] = None, json_mode: bool = False) -> None:
    """Force emit metrics snapshot now (useful for tests without sleeping)."""
    _Exporter(interval_sec=0, json_mode=json_mode, logger=logger).emit_snapshot()
