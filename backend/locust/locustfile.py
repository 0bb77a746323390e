"""
Locust Load Test Suite

Run scenarios:
  locust -f locustfile.py --tags concurrency  # Overlapping reservations
  locust -f locustfile.py --tags webhook      # Duplicate notification storm
  locust -f locustfile.py --tags throughput   # Availability cache
  locust -f locustfile.py --tags edge         # Bad input
  locust -f locustfile.py                     # All tests
"""

import random
import uuid
from locust import HttpUser, task, between, tag, events

# Shared state
ORDER_IDS = []
HOT_NUMBERS = ["0001", "0002", "0003", "0004", "0005", "0006", "0007", "0008", "0009", "0010"]
TOTAL_SUPPLY = 300


def random_numbers(k=None):
    k = k or random.randint(1, 5)
    return [f"{n:04d}" for n in random.sample(range(1, TOTAL_SUPPLY + 1), k)]


def random_buyer():
    return f"load-{uuid.uuid4().hex[:12]}"


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "="*60)
    print("Raffle inventory load test")
    print("Hot numbers: " + ", ".join(HOT_NUMBERS))
    print("="*60)


class ConcurrencyUser(HttpUser):
    """
    TEST 1: Concurrency - 100 users fighting for the same 10 numbers

    Run: locust -f locustfile.py --tags concurrency -u 100 -r 50 --run-time 30s

    After test, verify no number is held twice:
      SELECT number, COUNT(*) FROM ticket_holds GROUP BY number HAVING COUNT(*) > 1;
    Should return nothing (and cannot: number is the primary key).
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.buyer_id = random_buyer()

    @tag("concurrency")
    @task
    def reserve_hot_numbers(self):
        """Everyone wants low numbers."""
        numbers = random.sample(HOT_NUMBERS, random.randint(1, 3))
        with self.client.post("/api/v1/reservations",
            json={"numbers": numbers, "buyerId": self.buyer_id},
            catch_response=True
        ) as resp:
            if resp.status_code == 201:
                ORDER_IDS.append(resp.json()["orderId"])
                resp.success()
            elif resp.status_code == 400 and resp.json().get("code") == "already_held":
                resp.success()  # Expected: someone else holds it
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class WebhookStormUser(HttpUser):
    """
    TEST 2: Duplicate webhook deliveries

    Run: locust -f locustfile.py --tags webhook -u 50 -r 25 --run-time 30s

    Every user replays notifications for a handful of payment ids.
    The endpoint must answer 200 every time; check
    raffle_webhook_notifications_total{outcome="duplicate_in_flight"} on /metrics.
    """
    wait_time = between(0, 0.2)

    @tag("webhook")
    @task
    def replay_notification(self):
        payment_id = str(random.randint(100000, 100010))
        with self.client.post("/api/v1/webhooks/mercadopago",
            json={"action": "payment.updated", "type": "payment", "data": {"id": payment_id}},
            name="/api/v1/webhooks/mercadopago",
            catch_response=True
        ) as resp:
            if resp.status_code == 200:
                resp.success()
            else:
                resp.failure(f"Webhook must always answer 200, got {resp.status_code}")


class ThroughputUser(HttpUser):
    """
    TEST 3: Throughput - Cache effectiveness

    Run twice:
      1. With Redis: locust -f locustfile.py --tags throughput -u 100 -r 20 --run-time 60s
      2. Without Redis: Stop Redis, run again

    Compare:
      - Avg response time
      - Requests/sec
      - P95/P99 latency
    """
    wait_time = between(0.1, 0.5)

    @tag("throughput", "read")
    @task(10)
    def availability_cached(self):
        """Hammer the cached endpoint."""
        self.client.get("/api/v1/numbers", name="/api/v1/numbers [cached]")

    @tag("throughput", "read")
    @task(3)
    def get_order(self):
        if ORDER_IDS:
            self.client.get(f"/api/v1/orders/{random.choice(ORDER_IDS)}",
                name="/api/v1/orders/{id}")

    @tag("throughput")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 4: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def _expect(self, resp, codes):
        if resp.status_code in codes:
            resp.success()
        else:
            resp.failure(f"Expected {codes}, got {resp.status_code}")

    @tag("edge")
    @task
    def out_of_range_number(self):
        with self.client.post("/api/v1/reservations",
            json={"numbers": [f"{TOTAL_SUPPLY + 1:04d}"], "buyerId": random_buyer()},
            catch_response=True
        ) as resp:
            self._expect(resp, [400])

    @tag("edge")
    @task
    def empty_numbers(self):
        with self.client.post("/api/v1/reservations",
            json={"numbers": [], "buyerId": random_buyer()},
            catch_response=True
        ) as resp:
            self._expect(resp, [400, 422])

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post("/api/v1/reservations",
            data="not json at all",
            catch_response=True
        ) as resp:
            self._expect(resp, [400, 422])

    @tag("edge")
    @task
    def checkout_unknown_order(self):
        with self.client.post("/api/v1/orders/does-not-exist/checkout",
            json={"buyerId": random_buyer(), "buyerName": "Load Test", "buyerPhone": "+550000"},
            name="/api/v1/orders/{id}/checkout",
            catch_response=True
        ) as resp:
            self._expect(resp, [409])

    @tag("edge")
    @task
    def garbage_webhook(self):
        with self.client.post("/api/v1/webhooks/mercadopago",
            data="garbage",
            catch_response=True
        ) as resp:
            self._expect(resp, [200])


class RealisticUser(HttpUser):
    """
    TEST 5: Realistic mixed workload

    Run: locust -f locustfile.py -u 200 -r 20 --run-time 120s

    Simulates real traffic:
      - Mostly browsing availability
      - Some reservations
      - Rare checkouts (needs MP_ACCESS_TOKEN against the sandbox)
    """
    wait_time = between(1, 3)

    def on_start(self):
        self.buyer_id = random_buyer()
        self.order_id = None

    @task(50)
    def browse_numbers(self):
        self.client.get("/api/v1/numbers")

    @task(10)
    def reserve(self):
        resp = self.client.post("/api/v1/reservations",
            json={"numbers": random_numbers(), "buyerId": self.buyer_id},
            name="/api/v1/reservations")
        if resp.status_code == 201:
            self.order_id = resp.json()["orderId"]

    @task(5)
    def verify(self):
        if self.order_id:
            self.client.get(f"/api/v1/orders/{self.order_id}/verify",
                params={"buyerId": self.buyer_id},
                name="/api/v1/orders/{id}/verify")

    @task(2)
    def checkout(self):
        if self.order_id:
            self.client.post(f"/api/v1/orders/{self.order_id}/checkout",
                json={"buyerId": self.buyer_id, "buyerName": "Load Test", "buyerPhone": "+5511900000000"},
                name="/api/v1/orders/{id}/checkout")
            self.order_id = None
