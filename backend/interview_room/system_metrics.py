import threading
import time
from typing import Any, Callable


_lock = threading.Lock()
_counters: dict[str, float] = {
    "ws_connections_active": 0.0,
    "ws_disconnects_total": 0.0,
    "sessions_active": 0.0,
    "sessions_started": 0.0,
    "sessions_ended": 0.0,
    "sessions_reaped": 0.0,
    "messages_handled": 0.0,
    "protocol_errors": 0.0,
    "generation_fallbacks": 0.0,
    "result_generation_failures": 0.0,
    "recordings_uploaded": 0.0,
}
# name -> [total, samples]
_samples: dict[str, list[float]] = {
    "generation_latency_ms": [0.0, 0.0],
}


def _apply(name: str, update: Callable[[float], float]) -> None:
    key = str(name or "").strip()
    if not key:
        return
    with _lock:
        _counters[key] = max(0.0, float(update(float(_counters.get(key, 0.0)))))


def increment_metric(name: str, amount: float = 1.0) -> None:
    _apply(name, lambda current: current + float(amount))


def decrement_metric(name: str, amount: float = 1.0) -> None:
    _apply(name, lambda current: current - float(amount))


def set_metric(name: str, value: float) -> None:
    _apply(name, lambda _current: float(value))


def observe(name: str, value: float) -> None:
    with _lock:
        bucket = _samples.setdefault(name, [0.0, 0.0])
        bucket[0] += max(0.0, float(value or 0.0))
        bucket[1] += 1.0


def observe_generation_latency_ms(value_ms: float) -> None:
    observe("generation_latency_ms", value_ms)


def reset_metrics() -> None:
    with _lock:
        for key in _counters:
            _counters[key] = 0.0
        for bucket in _samples.values():
            bucket[0] = bucket[1] = 0.0


def get_metrics_snapshot(extra: dict[str, Any] | None = None) -> dict[str, Any]:
    with _lock:
        counters = dict(_counters)
        samples = {name: tuple(bucket) for name, bucket in _samples.items()}

    payload: dict[str, Any] = {"generated_at": time.time()}
    payload.update({name: int(value) for name, value in counters.items()})
    for name, (total, count) in samples.items():
        payload[f"avg_{name}"] = round(total / max(1.0, count), 2)
        payload[f"{name}_samples"] = int(count)

    if extra:
        payload.update(extra)
    return payload
