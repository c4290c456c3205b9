import time, sys
from concurrent.futures import ThreadPoolExecutor

import requests
from requests.adapters import HTTPAdapter

BASE = sys.argv[1] if len(sys.argv) > 1 else "http://127.0.0.1:8080"
CLIENTS = int(sys.argv[2]) if len(sys.argv) > 2 else 10
N = int(sys.argv[3]) if len(sys.argv) > 3 else 1_000

def make_session():
    s = requests.Session()
    adapter = HTTPAdapter(pool_connections=CLIENTS, pool_maxsize=CLIENTS, max_retries=0)
    s.mount("http://", adapter)
    s.headers.update({"Connection": "keep-alive"})
    return s

def worker(n: int):
    s = make_session()
    for _ in range(n):
        r = s.get(f"{BASE}/", timeout=10)
        r.raise_for_status()

def get_stats():
    r = requests.get(f"{BASE}/api/stats", timeout=10)
    r.raise_for_status()
    return r.json()

def main():
    before = get_stats()["total_visits"]
    t0 = time.perf_counter()

    with ThreadPoolExecutor(max_workers=CLIENTS) as ex:
        futures = [ex.submit(worker, N) for _ in range(CLIENTS)]
        for f in futures:
            f.result()

    dt = time.perf_counter() - t0
    stats = get_stats()
    after = stats["total_visits"]

    total = CLIENTS * N
    expected = before + total
    rps = total / dt if dt > 0 else float("inf")
    consistent = sum(stats["user_visits"].values()) == after

    print(f"clients={CLIENTS} calls_per_client={N} total_calls={total}")
    print(f"time_sec={dt:.6f} rps={rps:.2f}")
    print(f"visits_before={before} visits_after={after} expected={expected} ok={after==expected}")
    print(f"unique_visitors={stats['unique_visitors']} per_visitor_sum_matches={consistent}")

if __name__ == "__main__":
    main()
