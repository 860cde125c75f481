"""
Minimal Locust load test for the SignalGate API.

Run: SIGNALGATE_TOKEN=... locust -f locustfile.py --host=http://localhost:3000
Then open http://localhost:8089 and start a swarm.  Expect 429s on
/api/signals once a client exceeds the per-window limit.
"""

import os
import random
from locust import HttpUser, task, between

ORIGIN = os.environ.get("SIGNALGATE_ORIGIN", "http://localhost:3000")
TOKEN = os.environ.get("SIGNALGATE_TOKEN", "")


class SignalGateUser(HttpUser):
    wait_time = between(0.5, 1.5)

    @task(3)
    def signals(self):
        with self.client.get(
            "/api/signals",
            params={
                "start_time": "09:00",
                "end_time": "10:00",
                "assets": random.choice(["EURUSD", "GBPUSD", "USDJPY"]),
                "day": "1",
            },
            headers={
                "Origin": ORIGIN,
                "User-Agent": "Mozilla/5.0 (load test)",
                "X-Client-Token": TOKEN,
            },
            name="/api/signals",
            catch_response=True,
        ) as resp:
            if resp.status_code == 429:
                resp.success()

    @task(1)
    def verify_key(self):
        self.client.post(
            "/verify-key",
            json={"key": f"KEY-{random.randint(1, 1000)}"},
            name="/verify-key",
        )

    @task(1)
    def health(self):
        self.client.get("/health", name="/health")
