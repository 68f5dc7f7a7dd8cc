"""
Padding of published batches with fake keys.

Publishing only real keys would reveal the number of positive diagnoses. The
padding service keeps a fixed number of random keys per past day and mixes
them into every non-empty batch of that day.
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
import threading
from typing import List, Optional, Protocol, Sequence

import structlog

from dp3t_backend.config import (
    FAKE_KEYS_PER_DAY,
    KEY_LENGTH,
    MILLIS_PER_DAY,
    RETENTION_PERIOD,
    ROLLING_PERIOD_DEFAULT,
    TEN_MINUTES_MS,
)
from dp3t_backend.model import GaenKey, day_start_from_millis, millis_from_time
from dp3t_backend.services.storage import InMemoryGaenDataService
from dp3t_backend.validation import utc_now


class FakeKeyService(Protocol):
    def fill_up_keys(
        self,
        keys: Sequence[GaenKey],
        published_after: Optional[int],
        key_date: int,
        published_until: int,
    ) -> List[GaenKey]:
        """Return keys topped up with fake keys for key_date"""


def generate_fake_key(day_start, key_length=KEY_LENGTH):
    """Returns a random key valid for the whole day starting at day_start

    Args:
        day_start (int): UTC midnight in UNIX epoch milliseconds
        key_length (int, optional): Length of the key data in bytes
    """
    return GaenKey(
        key_data=base64.b64encode(secrets.token_bytes(key_length)).decode("ascii"),
        rolling_start_number=day_start // TEN_MINUTES_MS,
        rolling_period=ROLLING_PERIOD_DEFAULT,
        transmission_risk_level=0,
    )


class RandomFakeKeyService:
    """Tops up batches with random keys.

    Fake keys are regenerated whenever the UTC day changes. The keys of a day
    are marked as received at the start of the following day, so they appear
    in the same bucket as the real keys uploaded at that time. Keys for the
    current day are never padded since the day is not complete yet.

    Args:
        keys_per_day (int): Number of fake keys per day
        retention_days (int): Number of past days to generate keys for
        enabled (bool): When False, batches are returned unchanged
        key_length (int): Length of the key data in bytes
        clock (callable, optional): Returns the current aware datetime
        store_factory (callable, optional): Creates the store of the fake keys
    """

    def __init__(
        self,
        keys_per_day=FAKE_KEYS_PER_DAY,
        retention_days=RETENTION_PERIOD,
        enabled=True,
        key_length=KEY_LENGTH,
        clock=utc_now,
        store_factory=InMemoryGaenDataService,
        logger=None,
    ):
        self.keys_per_day = keys_per_day
        self.retention_days = retention_days
        self.enabled = enabled
        self.key_length = key_length
        self.clock = clock
        self.store_factory = store_factory
        self.data_service = store_factory()
        self.log = logger or structlog.get_logger(__name__)

        self._lock = threading.Lock()
        self._generated_for = None

    def update_fake_keys(self):
        """Generate fake keys for the retention window ending today"""
        today = day_start_from_millis(millis_from_time(self.clock()))

        with self._lock:
            if self._generated_for == today:
                return

            # Start from a fresh store each day
            self.data_service = self.store_factory()

            day = today - self.retention_days * MILLIS_PER_DAY
            while day < today:
                keys = [
                    generate_fake_key(day, self.key_length)
                    for _ in range(self.keys_per_day)
                ]
                self.data_service.upsert_exposees(keys, day + MILLIS_PER_DAY)
                day += MILLIS_PER_DAY

            self._generated_for = today

        self.log.info(
            "fake_keys_generated",
            days=self.retention_days,
            keys_per_day=self.keys_per_day,
        )

    def fill_up_keys(self, keys, published_after, key_date, published_until):
        """Add the fake keys of key_date to keys

        The result is sorted by key data so that the position of a key does
        not tell whether it is fake.

        Args:
            keys ([:obj:`GaenKey`]): The real keys of the batch
            published_after (int, optional): Watermark of the request
            key_date (int): UTC midnight of the requested day
            published_until (int): Bucket boundary of the batch
        """
        if not self.enabled:
            return list(keys)

        today = day_start_from_millis(millis_from_time(self.clock()))
        if key_date >= today:
            return list(keys)

        self.update_fake_keys()
        fake_keys = self.data_service.get_sorted_exposed_for_key_date(
            key_date, published_after, published_until
        )

        return sorted(list(keys) + fake_keys, key=lambda key: key.key_data)
