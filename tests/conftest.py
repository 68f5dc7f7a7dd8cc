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
from datetime import datetime, timedelta, timezone

import pytest
from Cryptodome.PublicKey import ECC

from dp3t_backend.model import GaenKey
from dp3t_backend.services.identity import ClaimTokenService

#: A Sunday afternoon, in the 14:00 bucket of 2-hour buckets
START_TIME = datetime(2020, 10, 18, 15, 17, tzinfo=timezone.utc)

#: UTC midnights around START_TIME in milliseconds
TODAY_MS = 1602979200000
YESTERDAY_MS = 1602892800000
TWO_DAYS_AGO_MS = 1602806400000

#: Start of the bucket containing START_TIME
BUCKET_START_MS = 1603029600000
NEXT_BUCKET_MS = 1603036800000

#: rollingStartNumber of today and yesterday
TODAY_INTERVAL = 2671632
YESTERDAY_INTERVAL = 2671488


class Clock:
    """A settable clock returning aware datetimes"""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class RecordingSleep:
    """Replaces asyncio.sleep and remembers the requested delays"""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


class RecordingLogger:
    """Minimal structlog stand-in that keeps the emitted events"""

    def __init__(self):
        self.events = []

    def bind(self, **kwargs):
        return self

    def _record(self, level):
        def log(event, **kwargs):
            self.events.append((level, event, kwargs))

        return log

    def __getattr__(self, level):
        return self._record(level)


def make_key(seed, rolling_start_number=YESTERDAY_INTERVAL, rolling_period=144, fake=0):
    return GaenKey(
        key_data=base64.b64encode(bytes([seed]) * 16).decode("ascii"),
        rolling_start_number=rolling_start_number,
        rolling_period=rolling_period,
        transmission_risk_level=0,
        fake=fake,
    )


def key_json(seed, rolling_start_number=YESTERDAY_INTERVAL, rolling_period=144, fake=0):
    key = make_key(seed, rolling_start_number, rolling_period, fake)
    return key.model_dump(by_alias=True)


@pytest.fixture
def clock():
    return Clock(START_TIME)


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def logger():
    return RecordingLogger()


@pytest.fixture
def authority_key():
    return ECC.generate(curve="P-256")


@pytest.fixture
def token_service(clock, authority_key):
    return ClaimTokenService(trusted_keys=[authority_key.public_key()], clock=clock)


@pytest.fixture
def authority_token(clock, authority_key):
    """Returns a function issuing health authority tokens"""

    def issue(scope="exposed", fake="0", **extra):
        claims = {
            "sub": "test-subject",
            "scope": scope,
            "fake": fake,
            "exp": int((clock() + timedelta(minutes=5)).timestamp()),
        }
        claims.update(extra)
        return ClaimTokenService.sign_claims(claims, authority_key)

    return issue
