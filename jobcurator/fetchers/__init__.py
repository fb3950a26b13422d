"""
Fetcher layer for JobCurator.

Provides the HTTP liveness probe used by the lifecycle sweeps.
"""

from jobcurator.fetchers.http import (
    STRONG_CLOSED_PHRASES,
    LivenessProber,
    ProbeResult,
    ProbeVerdict,
    classify_status,
    find_closed_phrase,
)

__all__ = [
    "STRONG_CLOSED_PHRASES",
    "LivenessProber",
    "ProbeResult",
    "ProbeVerdict",
    "classify_status",
    "find_closed_phrase",
]
