from time import time
from fastapi import HTTPException, status
from typing import Dict, List
from threading import Lock

_requests: Dict[str, List[float]] = {}
_lock = Lock()
_last_sweep = 0.0

WINDOW_SECONDS = 60


def _sweep(now: float):
    """Drop keys with no request inside the window. Runs at most once per window."""
    global _last_sweep
    if now - _last_sweep < WINDOW_SECONDS:
        return
    cutoff = now - WINDOW_SECONDS
    for key in [k for k, timestamps in _requests.items() if not timestamps or timestamps[-1] <= cutoff]:
        del _requests[key]
    _last_sweep = now


def rate_limit(key: str, max_requests: int):
    now = time()

    with _lock:
        # keys come from request bodies, so idle ones must not pile up
        _sweep(now)

        # Remove old timestamps outside window
        cutoff = now - WINDOW_SECONDS
        timestamps = [ts for ts in _requests.get(key, []) if ts > cutoff]

        if len(timestamps) >= max_requests:
            _requests[key] = timestamps
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests. Please slow down.",
                headers={"Retry-After": str(WINDOW_SECONDS)},
            )

        timestamps.append(now)
        _requests[key] = timestamps


def reset_rate_limits():
    global _last_sweep
    with _lock:
        _requests.clear()
        _last_sweep = 0.0
