"""
Validation of uploaded keys and of requested dates
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
import binascii
import datetime

from dp3t_backend.config import (
    BUCKET_LENGTH_MS,
    KEY_LENGTH,
    MILLIS_PER_DAY,
    RETENTION_PERIOD,
    ROLLING_PERIOD_DEFAULT,
)
from dp3t_backend.errors import MalformedInputError
from dp3t_backend.model import millis_from_time


def utc_now():
    return datetime.datetime.now(datetime.timezone.utc)


def normalize_rolling_period(key):
    """Return the key with a valid rolling period

    Some clients send a rolling period of 0 for keys that are valid for the
    whole day. That value can never be valid, so it is mapped to the default.

    Args:
        key (:obj:`GaenKey`): An uploaded key

    Returns:
        :obj:`GaenKey`: The key, or a copy with the default rolling period

    Raises:
        MalformedInputError: If the rolling period is negative
    """
    if key.rolling_period == 0:
        return key.model_copy(update={"rolling_period": ROLLING_PERIOD_DEFAULT})
    if key.rolling_period < 0:
        raise MalformedInputError("Rolling Period MUST NOT be negative.")
    return key


class ValidationUtils:
    """Checks keys and dates against the configured retention window.

    Args:
        key_length (int): Length of a decoded key in bytes
        retention_days (int): Number of past days that are published
        bucket_length (int): Bucket length in milliseconds
        clock (callable, optional): Returns the current aware datetime
    """

    def __init__(
        self,
        key_length=KEY_LENGTH,
        retention_days=RETENTION_PERIOD,
        bucket_length=BUCKET_LENGTH_MS,
        clock=utc_now,
    ):
        self.key_length = key_length
        self.retention_days = retention_days
        self.bucket_length = bucket_length
        self.clock = clock

    def is_valid_base64_key(self, value):
        """Whether value is strict base64 of exactly key_length bytes"""
        try:
            key = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError, TypeError):
            return False
        return len(key) == self.key_length

    def is_date_in_range(self, millis):
        """Whether millis is neither in the future nor older than the retention

        Args:
            millis (int): A timestamp in UNIX epoch milliseconds
        """
        now = millis_from_time(self.clock())
        oldest = now - self.retention_days * MILLIS_PER_DAY
        return oldest <= millis <= now

    def is_valid_key_date(self, key_date):
        """Whether key_date is a UTC midnight within the retention window"""
        if key_date % MILLIS_PER_DAY != 0:
            return False
        return self.is_date_in_range(key_date)

    def is_valid_batch_release_time(self, release_time):
        """Whether release_time is a bucket boundary within the retention window"""
        if release_time % self.bucket_length != 0:
            return False
        return self.is_date_in_range(release_time)
