from threading import Lock
from typing import Dict, List

# Runtime state shared across modules
processed_messages: Dict[str, float] = {}
processed_lock = Lock()

# instance -> [request count, window reset time]
rate_limit_windows: Dict[str, List[float]] = {}
rate_limit_lock = Lock()


def reset_state() -> None:
    with processed_lock:
        processed_messages.clear()
    with rate_limit_lock:
        rate_limit_windows.clear()
