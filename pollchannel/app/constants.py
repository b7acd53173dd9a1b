"""Channel-level constants shared across modules."""
from __future__ import annotations

from datetime import timedelta

# Maximum number of messages requested per receive call.
RECEIVE_BATCH_LIMIT = 10

# Idle wait that never elapses on its own; only cancellation ends it.
WAIT_INDEFINITELY = timedelta(milliseconds=-1)

# Upper bound (inclusive) for the idle wait, in milliseconds.
MAX_IDLE_MILLISECONDS = 2**31 - 1

# Endpoint status codes at or above this value are failures.
FAILURE_STATUS_THRESHOLD = 400


def is_failure_status(status_code: int) -> bool:
    return int(status_code) >= FAILURE_STATUS_THRESHOLD
