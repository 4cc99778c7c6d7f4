"""
Load test for the handbook API.
Sends concurrent reads for the same handbook keys to measure throughput and
latency of the cached read path (the first request per key materializes it).

Usage:  python load_test.py [num_requests] [concurrency]
"""
import sys
import time
import json
import urllib.request
import urllib.error
from concurrent.futures import ThreadPoolExecutor, as_completed

API_URL = "http://127.0.0.1:8080/handbooks"

KEYS = [
    "engineering",
    "letters",
    "medicine",
    "business_administration",
]


def send_request(key: str) -> dict:
    req = urllib.request.Request(f"{API_URL}/{key}", method="GET")
    start = time.perf_counter()
    try:
        with urllib.request.urlopen(req, timeout=600) as resp:
            data = json.loads(resp.read())
            latency = (time.perf_counter() - start) * 1000
            return {"success": True, "key": key, "latency_ms": latency, "characters": data.get("characters", 0)}
    except Exception as e:
        latency = (time.perf_counter() - start) * 1000
        return {"success": False, "key": key, "latency_ms": latency, "error": str(e)}


def main():
    num_requests = int(sys.argv[1]) if len(sys.argv) > 1 else 40
    concurrency = int(sys.argv[2]) if len(sys.argv) > 2 else 8

    print(f"\n{'='*60}")
    print(f"  Binran Handbook Load Test")
    print(f"  Requests: {num_requests}  |  Concurrency: {concurrency}")
    print(f"{'='*60}\n")

    results = []
    wall_start = time.perf_counter()

    with ThreadPoolExecutor(max_workers=concurrency) as pool:
        futures = [pool.submit(send_request, KEYS[i % len(KEYS)]) for i in range(num_requests)]
        for f in as_completed(futures):
            r = f.result()
            status = "OK" if r["success"] else "FAIL"
            print(f"  [{status}] {r['key']:<26} {r['latency_ms']:>10.1f} ms")
            results.append(r)

    wall_elapsed = time.perf_counter() - wall_start

    # Summary.
    successes = [r for r in results if r["success"]]
    failures = [r for r in results if not r["success"]]
    latencies = sorted(r["latency_ms"] for r in successes)

    print(f"\n{'='*60}")
    print(f"  Succeeded: {len(successes)}  |  Failed: {len(failures)}")
    print(f"  Wall time: {wall_elapsed:.2f} s  |  Throughput: {len(results) / wall_elapsed:.2f} req/s")
    if latencies:
        p50 = latencies[len(latencies) // 2]
        p95 = latencies[min(len(latencies) - 1, int(len(latencies) * 0.95))]
        print(f"  Latency p50: {p50:.1f} ms  |  p95: {p95:.1f} ms  |  max: {latencies[-1]:.1f} ms")
    for r in failures[:5]:
        print(f"  FAIL {r['key']}: {r['error']}")
    print(f"{'='*60}\n")


if __name__ == "__main__":
    main()
