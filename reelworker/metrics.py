"""
In-memory pipeline metrics, reset on restart.

Counters in use: runs.started / runs.completed / runs.failed,
generation.submitted, generation.poll_attempts, errors.generation_timeout,
errors.metadata_persistence. Gauges: active_runs, start_time. Latency is
sampled per stage ("pipeline", "generation", "assembly").
"""

import threading
import time
from collections import defaultdict, deque
from typing import Deque, Dict

_lock = threading.Lock()

MAX_SAMPLES = 100
MAX_ERRORS = 20

_counters: Dict[str, int] = defaultdict(int)
_gauges: Dict[str, float] = defaultdict(float)
_latency: Dict[str, Deque[float]] = defaultdict(lambda: deque(maxlen=MAX_SAMPLES))
_errors: Deque[dict] = deque(maxlen=MAX_ERRORS)


def inc_counter(name: str, amount: int = 1):
    with _lock:
        _counters[name] += amount


def get_counter(name: str) -> int:
    with _lock:
        return _counters.get(name, 0)


def set_gauge(name: str, value: float):
    with _lock:
        _gauges[name] = value


def add_gauge(name: str, delta: float):
    with _lock:
        _gauges[name] += delta


def record_latency(stage: str, duration_ms: float):
    with _lock:
        _latency[stage].append(duration_ms)


def record_error(stage: str, error_type: str, message: str, run_id: str = ""):
    """Keep the last few run failures for the /metrics endpoint."""
    with _lock:
        _errors.append({
            "timestamp": time.time(),
            "run_id": run_id,
            "stage": stage,
            "error_type": error_type,
            "message": message[:300],
        })


def get_snapshot() -> dict:
    now = time.time()
    with _lock:
        latency = {
            stage: {"avg": sum(s) / len(s), "max": max(s), "count": len(s)}
            for stage, s in _latency.items()
            if s
        }
        started = _counters.get("runs.started", 0)
        failed = _counters.get("runs.failed", 0)
        return {
            "counters": dict(_counters),
            "gauges": dict(_gauges),
            "latency": latency,
            "failure_rate": round(failed / started * 100, 2) if started else 0,
            "recent_errors": list(_errors),
            "uptime_seconds": now - _gauges.get("start_time", now),
        }


def reset():
    with _lock:
        _counters.clear()
        _gauges.clear()
        _latency.clear()
        _errors.clear()
