"""
Clinic Load Testing with Locust

Run with (from the repo root, backend running on :5001):
    locust -f backend/tests/stress/locustfile.py --host http://127.0.0.1:5001

Or headless:
    locust -f backend/tests/stress/locustfile.py --host http://127.0.0.1:5001 \
           --users 10 --spawn-rate 2 --run-time 60s --headless

Accounts are read from the environment (LOAD_PHARMACIST_EMAIL, LOAD_PATIENT_EMAIL,
LOAD_PASSWORD). Sales target LOAD_ITEM_ID; give it plenty of stock first.

Pass thresholds:
- p95 response time < 500ms for reads
- p95 response time < 1000ms for writes
- Error rate < 1% (409 insufficient_stock / slot taken are expected outcomes, not errors)
"""

import os
import random
import time
from datetime import date, timedelta
from typing import Dict, List, Optional

from locust import HttpUser, between, events, task

PASSWORD = os.environ.get("LOAD_PASSWORD", "Password123!")
PHARMACIST_EMAIL = os.environ.get("LOAD_PHARMACIST_EMAIL", "pharmacist@clinic.local")
PATIENT_EMAIL = os.environ.get("LOAD_PATIENT_EMAIL", "patient@clinic.local")
ITEM_ID = int(os.environ.get("LOAD_ITEM_ID", "1"))


# =============================================================================
# METRICS TRACKING
# =============================================================================

class MetricsCollector:
    def __init__(self):
        self.response_times: Dict[str, List[float]] = {}
        self.error_counts: Dict[str, int] = {}

    def record(self, name: str, response_time: float, success: bool):
        self.response_times.setdefault(name, []).append(response_time)
        self.error_counts.setdefault(name, 0)
        if not success:
            self.error_counts[name] += 1

    def get_summary(self) -> Dict:
        summary = {}
        for name, times in self.response_times.items():
            times = sorted(times)
            count = len(times)
            p95_idx = min(int(count * 0.95), count - 1)
            summary[name] = {
                "count": count,
                "errors": self.error_counts[name],
                "error_rate": self.error_counts[name] / count * 100,
                "avg_ms": sum(times) / count,
                "p95_ms": times[p95_idx],
            }
        return summary


metrics = MetricsCollector()


# =============================================================================
# USER BEHAVIORS
# =============================================================================

class ClinicUser(HttpUser):
    """Base user that logs in on start."""
    wait_time = between(0.5, 2)
    abstract = True

    email: str = ""
    token: Optional[str] = None

    def on_start(self):
        response = self.client.post(
            "/api/accounts/login",
            json={"email": self.email, "password": PASSWORD},
            name="accounts/login",
        )
        if response.status_code == 200:
            self.token = response.json().get("token")

    def get_headers(self) -> Dict:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def timed(self, name: str, method: str, path: str, ok_statuses=(200,), **kwargs):
        start = time.time()
        response = self.client.request(method, path, headers=self.get_headers(), name=name, **kwargs)
        metrics.record(name, (time.time() - start) * 1000, response.status_code in ok_statuses)
        return response


class PharmacistUser(ClinicUser):
    """Sells against a single hot item so sales contend for the same row."""
    weight = 2
    email = PHARMACIST_EMAIL

    @task(4)
    def sell(self):
        self.timed(
            "sales/create",
            "POST",
            "/api/sales/",
            ok_statuses=(201, 409),
            json={
                "payment_method": random.choice(["cash", "card"]),
                "lines": [{"item_id": ITEM_ID, "quantity": random.randint(1, 3)}],
            },
        )

    @task(2)
    def low_stock(self):
        self.timed("inventory/low-stock", "GET", "/api/inventory/low-stock")

    @task(1)
    def stats(self):
        self.timed("sales/stats", "GET", "/api/sales/stats")


class PatientUser(ClinicUser):
    """Browses doctors and books random slots; collisions are expected."""
    weight = 3
    email = PATIENT_EMAIL
    doctors: List[Dict] = []

    @task(3)
    def list_doctors(self):
        response = self.timed("accounts/doctors", "GET", "/api/accounts/doctors")
        if response.status_code == 200:
            self.doctors = response.json().get("doctors", [])

    @task(2)
    def book(self):
        if not self.doctors:
            return
        doctor = random.choice(self.doctors)
        day = date.today() + timedelta(days=random.randint(1, 30))
        self.timed(
            "appointments/book",
            "POST",
            "/api/appointments/",
            ok_statuses=(201, 409),
            json={
                "doctor_id": doctor["id"],
                "date": day.isoformat(),
                "time": f"{random.randint(9, 16):02d}:{random.choice(['00', '30'])}",
                "problem": "Load test checkup",
                "amount_cents": doctor["doctor"]["fee_cents"],
                "payment_method": "clinic",
            },
        )

    @task(1)
    def my_appointments(self):
        self.timed("appointments/list", "GET", "/api/appointments/")

    @task(1)
    def health_check(self):
        self.timed("system/health", "GET", "/health")


# =============================================================================
# EVENT HANDLERS
# =============================================================================

@events.test_stop.add_listener
def on_test_stop(environment, **kwargs):
    """Print summary when test stops."""
    print("\n" + "=" * 80)
    print("LOAD TEST SUMMARY")
    print("=" * 80)
    print(f"\n{'Endpoint':<30} {'Count':>8} {'Errors':>8} {'Err%':>8} {'Avg(ms)':>10} {'P95(ms)':>10}")
    print("-" * 80)

    all_pass = True
    for name, stats in sorted(metrics.get_summary().items()):
        p95_threshold = 1000 if name in ("sales/create", "appointments/book") else 500
        passed = stats["p95_ms"] < p95_threshold and stats["error_rate"] < 1
        all_pass = all_pass and passed
        print(f"{name:<30} {stats['count']:>8} {stats['errors']:>8} {stats['error_rate']:>7.2f}% "
              f"{stats['avg_ms']:>9.1f} {stats['p95_ms']:>9.1f} [{'PASS' if passed else 'FAIL'}]")

    print("=" * 80)
    print("\n[PASS] All endpoints within thresholds" if all_pass else "\n[FAIL] Some endpoints exceeded thresholds")
