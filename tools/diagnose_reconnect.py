#!/usr/bin/env python3
"""
Reconnect / stale-source diagnosis tool.
Measures: resolver latency, and how long a stale-src repair takes to land.
"""
import os
import sys
import time
import requests

BACKEND_URL = os.getenv("BACKEND_URL", "http://127.0.0.1:8000")
TEST_KEY = os.getenv("TEST_KEY", "/NTSRadio/floating-points-23rd-july-2015/")


def measure_resolve(key):
    """Measure a single /api/resolve request."""
    print(f"\n{'='*60}")
    print(f"RESOLVE {key}")
    print(f"{'='*60}")
    t0 = time.time()
    try:
        response = requests.get(f"{BACKEND_URL}/api/resolve", params={"key": key}, timeout=120)
        elapsed_ms = (time.time() - t0) * 1000
        data = response.json()
    except Exception as e:
        print(f"\n❌ Error: {e}")
        return None

    print(f"  HTTP {response.status_code} in {elapsed_ms:8.1f} ms")
    if response.status_code != 200:
        detail = data.get("detail", {})
        print(f"  kind={detail.get('kind')} error={detail.get('error')}")
        return None
    print(f"  url: {data.get('url')}")
    return {"elapsed_ms": elapsed_ms, "url": data.get("url")}


def measure_repair(stale_src, key, timeout_s=90):
    """Report `stale_src` as failed and poll the playlist until the entry for `key` changes."""
    print(f"\n{'='*60}")
    print(f"REPAIR stale src for {key}")
    print(f"{'='*60}")
    t0 = time.time()
    r = requests.post(f"{BACKEND_URL}/api/playback/failed", json={"src": stale_src}, timeout=10)
    matched = r.json().get("matched", 0)
    print(f"  matched entries: {matched}")
    if not matched:
        return None
    while time.time() - t0 < timeout_s:
        entries = requests.get(f"{BACKEND_URL}/api/playlist", timeout=10).json().get("entries", [])
        current = next((e for e in entries if e["key"] == key), None)
        if current and current.get("src") != stale_src:
            elapsed_ms = (time.time() - t0) * 1000
            print(f"  repaired in {elapsed_ms:8.1f} ms -> {current.get('src')}")
            return elapsed_ms
        time.sleep(0.5)
    print(f"  ⚠️  not repaired within {timeout_s}s (see {BACKEND_URL}/notices)")
    return None


def main(argv):
    key = argv[1] if len(argv) > 1 else TEST_KEY
    health = requests.get(f"{BACKEND_URL}/api/connectivity", timeout=10).json()
    print(f"Backend online={health.get('online')} probe_running={health.get('probe_running')}")

    first = measure_resolve(key)
    if not first:
        return 1
    if len(argv) > 2:
        measure_repair(argv[2], key)
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv))
