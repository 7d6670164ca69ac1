from __future__ import annotations

import logging
import time
from typing import Callable, Optional, TypeVar

import requests

logger = logging.getLogger("medqa.openai")

RATE_LIMIT_STATUS = 429

ResponseT = TypeVar("ResponseT", bound=requests.Response)


def call_with_backoff(
    send: Callable[[], ResponseT],
    attempts: int = 3,
    base_delay: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> ResponseT:
    """Purpose: Issue a request and retry only while the backend reports rate limiting.
    Inputs/Outputs: Input is a zero-arg send callable plus attempt/delay bounds; output
        is the first non-429 response, or the last 429 once attempts run out.
    Side Effects / State: Sleeps after every 429, starting at base_delay and doubling.
    Dependencies: send usually wraps requests.Session.post.
    Failure Modes: Exceptions from send propagate unchanged; attempts < 1 still sends once.
    If Removed: Every 429 from the backend becomes an unusable result.
    Testing Notes: Inject a fake sleep and assert the 1, 2, 4 schedule.
    """
    # Retry only on 429; every other status goes straight back to the caller.
    wait = base_delay
    last: Optional[ResponseT] = None
    total = max(attempts, 1)
    for attempt in range(total):
        response = send()
        if response.status_code != RATE_LIMIT_STATUS:
            return response
        last = response
        logger.warning("rate_limited attempt=%s/%s wait=%.2fs", attempt + 1, total, wait)
        sleep(wait)
        wait *= 2
    return last
