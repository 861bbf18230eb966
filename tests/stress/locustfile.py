"""
Shop Ledger Load Testing with Locust

Run with:
    locust -f tests/stress/locustfile.py --host http://127.0.0.1:5001

Or headless:
    locust -f tests/stress/locustfile.py --host http://127.0.0.1:5001 \
           --users 10 --spawn-rate 2 --run-time 60s --headless

Pass thresholds:
- p95 response time < 500ms for reads
- p95 response time < 1000ms for writes
- Error rate < 1%

Every user creates its own catalog product on start, so a fresh database
works without seeding.
"""

import time
import random
from typing import Optional, Dict, List

from locust import HttpUser, task, between, events


# =============================================================================
# METRICS TRACKING
# =============================================================================

class MetricsCollector:
    """Collect and report metrics."""

    def __init__(self):
        self.request_counts: Dict[str, int] = {}
        self.error_counts: Dict[str, int] = {}
        self.response_times: Dict[str, List[float]] = {}

    def record(self, name: str, response_time: float, success: bool):
        if name not in self.request_counts:
            self.request_counts[name] = 0
            self.error_counts[name] = 0
            self.response_times[name] = []

        self.request_counts[name] += 1
        if not success:
            self.error_counts[name] += 1
        self.response_times[name].append(response_time)

    def get_summary(self) -> Dict:
        summary = {}
        for name in self.request_counts:
            times = sorted(self.response_times[name])
            count = len(times)
            if count == 0:
                continue

            p50_idx = int(count * 0.50)
            p95_idx = int(count * 0.95)
            p99_idx = int(count * 0.99)

            summary[name] = {
                "count": self.request_counts[name],
                "errors": self.error_counts[name],
                "error_rate": self.error_counts[name] / self.request_counts[name] * 100,
                "avg_ms": sum(times) / count,
                "p50_ms": times[p50_idx] if p50_idx < count else times[-1],
                "p95_ms": times[p95_idx] if p95_idx < count else times[-1],
                "p99_ms": times[p99_idx] if p99_idx < count else times[-1],
            }
        return summary


metrics = MetricsCollector()


# =============================================================================
# USER BEHAVIORS
# =============================================================================

class ShopUser(HttpUser):
    """
    Base user that owns one catalog product.
    """
    wait_time = between(0.5, 2)
    abstract = True

    product_type = "sales"
    product: Optional[Dict] = None

    def on_start(self):
        self.created_bills: List[int] = []
        response = self.client.post(
            "/api/products",
            json={
                "name": f"Load {self.product_type} {random.getrandbits(48):012x}",
                "rate_cents": random.randint(500, 5000),
                "product_type": self.product_type,
                "stock_quantity": 1000,
                "min_stock_level": 10,
            },
            name="products/create"
        )
        if response.status_code == 201:
            self.product = response.json()

    def bill_line(self) -> Dict:
        return {
            "item_name": self.product["name"],
            "product_id": self.product["id"],
            "qty": random.randint(1, 3),
            "rate_cents": self.product["rate_cents"],
        }


class BrowsingUser(ShopUser):
    """
    User that primarily reads data.
    Simulates staff checking stock and looking up bills.
    """
    weight = 3

    @task(5)
    def list_products(self):
        start = time.time()
        response = self.client.get("/api/products", name="products/list")
        metrics.record("products/list", (time.time() - start) * 1000, response.status_code == 200)

    @task(3)
    def list_sales_bills(self):
        start = time.time()
        response = self.client.get(
            "/api/sales-bills",
            params={"limit": 20},
            name="sales-bills/list"
        )
        metrics.record("sales-bills/list", (time.time() - start) * 1000, response.status_code == 200)

    @task(2)
    def low_stock(self):
        start = time.time()
        response = self.client.get("/api/products/low-stock", name="products/low-stock")
        metrics.record("products/low-stock", (time.time() - start) * 1000, response.status_code == 200)

    @task(1)
    def analytics(self):
        start = time.time()
        response = self.client.get("/api/products/analytics", name="products/analytics")
        metrics.record("products/analytics", (time.time() - start) * 1000, response.status_code == 200)

    @task(1)
    def health_check(self):
        start = time.time()
        response = self.client.get("/api/health", name="system/health")
        metrics.record("system/health", (time.time() - start) * 1000, response.status_code == 200)


class SalesUser(ShopUser):
    """
    User that writes sales bills.
    Simulates the counter creating, editing and occasionally deleting bills.
    """
    weight = 2

    @task(4)
    def create_bill(self):
        if not self.product:
            return

        start = time.time()
        response = self.client.post(
            "/api/sales-bills",
            json={
                "customer_name": "Load Customer",
                "customer_phone": "9000000000",
                "items": [self.bill_line()],
                "tax_percentage": 18,
            },
            name="sales-bills/create"
        )
        metrics.record("sales-bills/create", (time.time() - start) * 1000, response.status_code == 201)

        if response.status_code == 201:
            self.created_bills.append(response.json()["bill"]["id"])

    @task(2)
    def edit_bill(self):
        if not self.created_bills:
            return

        bill_id = random.choice(self.created_bills[-10:])
        start = time.time()
        response = self.client.put(
            f"/api/sales-bills/{bill_id}",
            json={"items": [self.bill_line()], "is_paid": random.choice([True, False])},
            name="sales-bills/edit"
        )
        metrics.record("sales-bills/edit", (time.time() - start) * 1000, response.status_code == 200)

    @task(1)
    def delete_bill(self):
        if not self.created_bills:
            return

        bill_id = self.created_bills.pop(0)
        start = time.time()
        response = self.client.delete(f"/api/sales-bills/{bill_id}", name="sales-bills/delete")
        metrics.record("sales-bills/delete", (time.time() - start) * 1000, response.status_code == 200)


class RentalUser(ShopUser):
    """
    User that writes rental bills against a rental product.
    """
    weight = 1
    product_type = "rental"

    @task(3)
    def create_rental(self):
        if not self.product:
            return

        start = time.time()
        response = self.client.post(
            "/api/rental-bills",
            json={
                "customer_name": "Load Renter",
                "customer_phone": "9000000001",
                "items": [self.bill_line()],
                "from_date": "2024-06-01T10:00:00Z",
                "to_date": "2024-06-04T10:00:00Z",
                "transport_fees_cents": 500,
            },
            name="rental-bills/create"
        )
        metrics.record("rental-bills/create", (time.time() - start) * 1000, response.status_code == 201)

    @task(2)
    def restock(self):
        if not self.product:
            return

        start = time.time()
        response = self.client.post(
            "/api/products/restock",
            json={"product_id": self.product["id"], "quantity_change": random.randint(1, 5)},
            name="products/restock"
        )
        metrics.record("products/restock", (time.time() - start) * 1000, response.status_code == 200)

    @task(1)
    def next_serial(self):
        start = time.time()
        response = self.client.get("/api/rental-bills/next-serial", name="rental-bills/next-serial")
        metrics.record("rental-bills/next-serial", (time.time() - start) * 1000, response.status_code == 200)


# =============================================================================
# EVENT HANDLERS
# =============================================================================

@events.test_stop.add_listener
def on_test_stop(environment, **kwargs):
    """Print summary when test stops."""
    print("\n" + "=" * 80)
    print("LOAD TEST SUMMARY")
    print("=" * 80)

    summary = metrics.get_summary()

    print(f"\n{'Endpoint':<30} {'Count':>8} {'Errors':>8} {'Err%':>8} {'Avg(ms)':>10} {'P95(ms)':>10}")
    print("-" * 80)

    total_requests = 0
    total_errors = 0
    all_pass = True

    for name, stats in sorted(summary.items()):
        total_requests += stats["count"]
        total_errors += stats["errors"]

        is_write = any(word in name for word in ("create", "edit", "delete", "restock"))
        p95_threshold = 1000 if is_write else 500
        passed = stats["p95_ms"] < p95_threshold and stats["error_rate"] < 1

        status = "PASS" if passed else "FAIL"
        if not passed:
            all_pass = False

        print(f"{name:<30} {stats['count']:>8} {stats['errors']:>8} {stats['error_rate']:>7.2f}% {stats['avg_ms']:>9.1f} {stats['p95_ms']:>9.1f} [{status}]")

    print("-" * 80)
    print(f"{'TOTAL':<30} {total_requests:>8} {total_errors:>8} {total_errors/max(total_requests,1)*100:>7.2f}%")
    print("=" * 80)

    if all_pass:
        print("\n[PASS] All endpoints within thresholds")
    else:
        print("\n[FAIL] Some endpoints exceeded thresholds")
        print("  - Reads: P95 < 500ms, Error rate < 1%")
        print("  - Writes: P95 < 1000ms, Error rate < 1%")

    print("=" * 80)


def run_quick_stress_test(host: str, users: int = 5, duration: int = 30) -> Dict:
    """
    Run a headless locust session and return its JSON stats.

    from tests.stress.locustfile import run_quick_stress_test
    results = run_quick_stress_test("http://localhost:5001", users=5, duration=30)
    """
    import subprocess
    import json

    result = subprocess.run([
        "locust",
        "-f", __file__,
        "--host", host,
        "--users", str(users),
        "--spawn-rate", "2",
        "--run-time", f"{duration}s",
        "--headless",
        "--json"
    ], capture_output=True, text=True)

    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError:
        return {"error": result.stderr, "stdout": result.stdout}
