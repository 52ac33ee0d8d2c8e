"""Live backends for the sync integration tests.

Start them before running ``pytest -m integration``:
    docker run -p 9201:9200 -e discovery.type=single-node -e DISABLE_SECURITY_PLUGIN=true opensearchproject/opensearch:2
    docker run -p 7700:7700 -e MEILI_MASTER_KEY=test-master-key getmeili/meilisearch:v1.10

Tests that cannot reach their backend within the wait window are skipped.
"""

from __future__ import annotations

import time

import httpx
import pytest

OPENSEARCH_URL = "http://localhost:9201"
MEILISEARCH_URL = "http://localhost:7700"


def _require_backend(name: str, base_url: str, probe: str = "", wait: float = 120.0) -> str:
    deadline = time.monotonic() + wait
    with httpx.Client(base_url=base_url, timeout=10) as client:
        while time.monotonic() < deadline:
            try:
                ready = client.get(probe or "/").is_success
            except httpx.TransportError:
                ready = False
            if ready:
                return base_url
            time.sleep(2)
    pytest.skip(f"{name} not reachable at {base_url}")


@pytest.fixture(scope="session")
def opensearch_ready() -> str:
    return _require_backend("OpenSearch", OPENSEARCH_URL)


@pytest.fixture(scope="session")
def meilisearch_ready() -> str:
    return _require_backend("MeiliSearch", MEILISEARCH_URL, "/health")
