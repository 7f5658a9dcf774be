"""
Locust Load Test Suite

Resources and slots are seeded out of band (there is no CRUD API); point
the run at them with environment variables:
  LOAD_RESOURCE_ID     seat-based resource
  LOAD_SLOT_ID         slot of that resource
  LOAD_RENTAL_ID       inventory-based resource

Run scenarios:
  locust -f locustfile.py --tags contention   # Test overbooking on one slot
  locust -f locustfile.py --tags rental       # Test overlapping date ranges
  locust -f locustfile.py --tags calendar     # Test calendar cache
  locust -f locustfile.py --tags payments     # Test duplicate payment events
  locust -f locustfile.py --tags edge         # Test bad input
  locust -f locustfile.py                     # All tests
"""

import os
import random
import uuid
from datetime import date, timedelta

from locust import HttpUser, between, events, tag, task

RESOURCE_ID = int(os.getenv("LOAD_RESOURCE_ID", "1"))
SLOT_ID = int(os.getenv("LOAD_SLOT_ID", "1"))
RENTAL_ID = int(os.getenv("LOAD_RENTAL_ID", "2"))

# Shared state
HELD_RESERVATION_IDS = []


def rental_window():
    start = date.today() + timedelta(days=random.randint(1, 30))
    return start, start + timedelta(days=random.randint(1, 7))


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print(f"Seat resource {RESOURCE_ID} / slot {SLOT_ID}, rental resource {RENTAL_ID}")
    print("=" * 60)


class SlotContentionUser(HttpUser):
    """
    TEST 1: Contention - many users, one slot

    Run: locust -f locustfile.py --tags contention -u 100 -r 50 --run-time 30s

    After test, verify capacity conservation:
      SELECT s.remaining_seats + COALESCE(SUM(r.quantity), 0)
      FROM slots s LEFT JOIN reservations r
        ON r.slot_id = s.id AND r.status IN ('pending', 'confirmed')
      WHERE s.id = X GROUP BY s.remaining_seats;
    Should equal the resource capacity
    """
    wait_time = between(0, 0.1)

    @tag("contention")
    @task
    def hold_one_seat(self):
        with self.client.post(
            "/api/v1/reservations",
            json={
                "resource_id": RESOURCE_ID,
                "allocation": {"kind": "seat", "slot_id": SLOT_ID, "seats": 1},
            },
            name="/api/v1/reservations [seat]",
            catch_response=True,
        ) as resp:
            if resp.status_code == 201:
                HELD_RESERVATION_IDS.append(resp.json()["id"])
                resp.success()
            elif resp.status_code in (409, 503):
                resp.success()  # Expected: sold out or lost the race
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class RentalContentionUser(HttpUser):
    """
    TEST 2: Overlapping rentals on a small fleet

    Run: locust -f locustfile.py --tags rental -u 50 -r 25 --run-time 30s

    After test, no day may have more Pending/Confirmed reservations than
    unit_count.
    """
    wait_time = between(0, 0.2)

    @tag("rental")
    @task
    def hold_rental(self):
        start, end = rental_window()
        with self.client.post(
            "/api/v1/reservations",
            json={
                "resource_id": RENTAL_ID,
                "allocation": {"kind": "range", "start": start.isoformat(), "end": end.isoformat()},
            },
            name="/api/v1/reservations [range]",
            catch_response=True,
        ) as resp:
            if resp.status_code in (201, 409, 503):
                resp.success()
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class CalendarUser(HttpUser):
    """
    TEST 3: Calendar cache effectiveness

    Run twice:
      1. With Redis: locust -f locustfile.py --tags calendar -u 100 -r 20 --run-time 60s
      2. With REDIS_ENABLED=false, run again
    """
    wait_time = between(0.1, 0.5)

    @tag("calendar", "read")
    @task(10)
    def rental_calendar(self):
        start = date.today()
        end = start + timedelta(days=30)
        self.client.get(
            f"/api/v1/availability/resources/{RENTAL_ID}?start={start}&end={end}",
            name="/api/v1/availability/resources/{id} [cached]",
        )

    @tag("calendar", "read")
    @task(3)
    def slot_counts(self):
        self.client.get(f"/api/v1/availability/slots/{SLOT_ID}", name="/api/v1/availability/slots/{id}")

    @tag("calendar")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class PaymentReplayUser(HttpUser):
    """
    TEST 4: At-least-once payment delivery

    Every success event is sent twice. Each held reservation must end up
    confirmed exactly once; replays must answer result=duplicate.
    """
    wait_time = between(0.1, 0.3)

    @tag("payments")
    @task
    def confirm_twice(self):
        if not HELD_RESERVATION_IDS:
            return
        reservation_id = HELD_RESERVATION_IDS.pop()
        event = {
            "reservation_id": reservation_id,
            "outcome": "succeeded",
            "event_reference": f"evt_{uuid.uuid4().hex}",
        }
        self.client.post("/api/v1/payments/events", json=event, name="/api/v1/payments/events")
        with self.client.post(
            "/api/v1/payments/events",
            json=event,
            name="/api/v1/payments/events [replay]",
            catch_response=True,
        ) as resp:
            if resp.status_code == 200 and resp.json()["result"] == "duplicate":
                resp.success()
            else:
                resp.failure(f"Replay not deduplicated: {resp.status_code} {resp.text}")


class EdgeCaseUser(HttpUser):
    """
    TEST 5: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def _expect(self, payload, allowed, name):
        with self.client.post(
            "/api/v1/reservations", json=payload, name=name, catch_response=True
        ) as resp:
            if resp.status_code in allowed:
                resp.success()
            else:
                resp.failure(f"Expected {allowed}, got {resp.status_code}")

    @tag("edge")
    @task
    def unknown_slot(self):
        self._expect(
            {"resource_id": RESOURCE_ID, "allocation": {"kind": "seat", "slot_id": 999999}},
            (404,),
            "edge: unknown slot",
        )

    @tag("edge")
    @task
    def zero_seats(self):
        self._expect(
            {"resource_id": RESOURCE_ID, "allocation": {"kind": "seat", "slot_id": SLOT_ID, "seats": 0}},
            (422,),
            "edge: zero seats",
        )

    @tag("edge")
    @task
    def reversed_range(self):
        self._expect(
            {
                "resource_id": RENTAL_ID,
                "allocation": {"kind": "range", "start": "2030-01-10", "end": "2030-01-05"},
            },
            (422,),
            "edge: reversed range",
        )

    @tag("edge")
    @task
    def unknown_kind(self):
        self._expect(
            {"resource_id": RESOURCE_ID, "allocation": {"kind": "teleport"}},
            (422,),
            "edge: unknown allocation kind",
        )
