"""Load-testing script for the gateway's search path.

Run headless with:

    locust -f locustfile.py --headless -u 20 -r 2 -t1m -H http://localhost:3000

The run exits non-zero when the 95th percentile latency of `POST /api/search`
exceeds `LATENCY_P95_THRESHOLD_MS` (default **800 ms**). Search latency is
dominated by the embedding round trip, hence the looser default.
"""

from __future__ import annotations

import os
import random
import sys
from typing import Final

from locust import HttpUser, between, events, task

#: Results requested per search.
SEARCH_LIMIT: Final[int] = int(os.getenv("SEARCH_LIMIT", "10"))

#: Threshold (milliseconds) for the 95th-percentile search latency.
LATENCY_THRESHOLD_MS: Final[float] = float(os.getenv("LATENCY_P95_THRESHOLD_MS", "800"))

#: Optional locale filter applied to a share of the searches.
LOCALES: Final[list[str]] = ["en-us", "fr-fr", "de-de"]

QUERIES: Final[list[str]] = [
    "headless cms",
    "content modeling",
    "personalization",
    "localization workflow",
    "image optimization",
    "webhooks",
    "launch checklist",
    "seo best practices",
    "api rate limits",
    "release management",
]


class GatewayUser(HttpUser):
    """Mix of searches, filter lookups and liveness checks."""

    wait_time = between(0.5, 1.5)

    @task(8)
    def search(self) -> None:
        payload: dict[str, object] = {
            "query": random.choice(QUERIES),
            "limit": SEARCH_LIMIT,
        }
        if random.random() < 0.3:
            payload["locale"] = random.choice(LOCALES)

        with self.client.post(
            "/api/search", json=payload, catch_response=True
        ) as resp:
            if resp.status_code != 200:
                resp.failure(f"Unexpected status code {resp.status_code}")

    @task(2)
    def filters(self) -> None:
        self.client.get("/api/filters")

    @task(1)
    def health(self) -> None:
        self.client.get("/health")


@events.quitting.add_listener  # type: ignore[arg-type]
def _enforce_search_latency(environment, **_kwargs) -> None:  # type: ignore[no-untyped-def]
    stats_entry = environment.stats.get("/api/search", "POST")
    if stats_entry is None or stats_entry.num_requests == 0:
        print("No statistics collected for POST /api/search", file=sys.stderr)
        environment.process_exit_code = 1
        return

    p95 = stats_entry.get_current_response_time_percentile(0.95)
    print(f"POST /api/search P95 latency: {p95:.2f} ms (threshold {LATENCY_THRESHOLD_MS} ms)")
    if p95 > LATENCY_THRESHOLD_MS:
        print("Latency threshold exceeded! Marking test run as failed.", file=sys.stderr)
        environment.process_exit_code = 1
