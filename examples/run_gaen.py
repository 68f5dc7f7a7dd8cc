#!/usr/bin/env python3

""" Simple example/demo of the GAEN backend

This demo lets a health authority authorize an infected user, whose phone
uploads its keys on two consecutive days. Another phone then downloads and
verifies the published batches.
"""

__copyright__ = """
    Copyright 2020 EPFL

    Licensed under the Apache License, Version 2.0 (the "License");
    you may not use this file except in compliance with the License.
    You may obtain a copy of the License at

        http://www.apache.org/licenses/LICENSE-2.0

    Unless required by applicable law or agreed to in writing, software
    distributed under the License is distributed on an "AS IS" BASIS,
    WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
    See the License for the specific language governing permissions and
    limitations under the License.
"""
__license__ = "Apache 2.0"


import base64
import secrets
from datetime import datetime, timedelta, timezone

from Cryptodome.PublicKey import ECC
from fastapi.testclient import TestClient

from dp3t_backend.api import create_app
from dp3t_backend.config import GaenSettings, MILLIS_PER_DAY, ROLLING_PERIOD_DEFAULT
from dp3t_backend.model import millis_from_time
from dp3t_backend.services.identity import ClaimTokenService
from dp3t_backend.services.signing import EcdsaBatchSigner, verify_archive

USER_AGENT = {"User-Agent": "ch.admin.bag.dp3t;1.0;android"}


class DemoClock:
    """Simulated time, so the demo does not wait for buckets to close"""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


async def no_sleep(seconds):
    print("  (response held back for {:.1f}s)".format(seconds))


def interval_of(day_start):
    return day_start // (10 * 60 * 1000)


def random_key(day_start):
    return {
        "keyData": base64.b64encode(secrets.token_bytes(16)).decode("ascii"),
        "rollingStartNumber": interval_of(day_start),
        "rollingPeriod": ROLLING_PERIOD_DEFAULT,
        "transmissionRiskLevel": 0,
        "fake": 0,
    }


def report_time(clock):
    print("---- {} ----".format(clock().strftime("%Y-%m-%d %H:%M UTC")))


def main():
    clock = DemoClock(datetime(2020, 10, 18, 9, 30, tzinfo=timezone.utc))
    today = millis_from_time(clock()) // MILLIS_PER_DAY * MILLIS_PER_DAY

    authority = ECC.generate(curve="P-256")
    signer = EcdsaBatchSigner()
    client = TestClient(
        create_app(
            GaenSettings(environment="development", log_level="WARNING"),
            signer=signer,
            token_service=ClaimTokenService(trusted_keys=[authority.public_key()], clock=clock),
            clock=clock,
            sleep=no_sleep,
        )
    )

    report_time(clock)
    print("The health authority authorizes Alice")
    covidcode = ClaimTokenService.sign_claims(
        {
            "sub": "alice",
            "scope": "exposed",
            "fake": "0",
            "exp": int((clock() + timedelta(minutes=5)).timestamp()),
        },
        authority,
    )

    past_keys = [random_key(today - day * MILLIS_PER_DAY) for day in range(1, 4)]
    response = client.post(
        "/v1/gaen/exposed",
        json={"gaenKeys": past_keys, "delayedKeyDate": interval_of(today)},
        headers=dict(USER_AGENT, Authorization="Bearer " + covidcode),
    )
    response.raise_for_status()
    second_day_token = response.headers["X-Exposed-Token"]
    print("Alice uploads {} keys and receives a second-day token".format(len(past_keys)))

    clock.now += timedelta(days=1)
    report_time(clock)
    response = client.post(
        "/v1/gaen/exposednextday",
        json={"delayedKey": random_key(today)},
        headers=dict(USER_AGENT, Authorization=second_day_token),
    )
    response.raise_for_status()
    print("Alice uploads the key of the day of her first upload")

    clock.now += timedelta(hours=2)
    report_time(clock)
    print("Bob downloads the batches of the last days")
    public_key = signer.private_key.public_key()
    received = 0
    for day in range(0, 4):
        key_date = today - day * MILLIS_PER_DAY
        response = client.get("/v1/gaen/exposed/{}".format(key_date))
        response.raise_for_status()
        if response.status_code == 204:
            print("  {}: nothing published".format(key_date))
            continue

        export = verify_archive(response.content, public_key)
        received += len(export["keys"])
        print(
            "  {}: {} keys, published until {}".format(
                key_date, len(export["keys"]), response.headers["X-PUBLISHED-UNTIL"]
            )
        )

    # Three past keys and the delayed key, plus fake keys on the past days
    assert received >= len(past_keys) + 1
    print("Bob verified {} keys".format(received))


if __name__ == "__main__":
    main()
