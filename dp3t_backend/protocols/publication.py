"""
Publication of uploaded keys in time buckets.

A batch only contains keys received up to the start of the current bucket.
Two requests in the same bucket therefore see the same batch, which makes the
responses safe to cache by any intermediary until the end of the bucket.
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

import datetime
from email.utils import formatdate

import structlog

from dp3t_backend.config import MILLIS_PER_DAY
from dp3t_backend.errors import MalformedInputError, OutOfRangeError
from dp3t_backend.model import (
    DayBuckets,
    ExposedHeader,
    ExposedKey,
    GaenExposedJson,
    Publication,
    bucket_start_from_millis,
    millis_from_time,
)
from dp3t_backend.validation import utc_now


#: Prefix of the relative URLs listed in the bucket index
EXPOSED_PATH = "/v1/gaen/exposed"


def rfc1123_date(millis):
    """Format UNIX epoch milliseconds as an HTTP date, always in GMT"""
    return formatdate(millis // 1000, usegmt=True)


class GaenPublicationProtocol:
    """Answers requests for the published keys of a day.

    Args:
        data_service: Storage of the real keys
        fake_key_service: Pads batches with fake keys
        signer: Signs binary batches
        validation (:obj:`ValidationUtils`): Checks on dates
        bucket_length (int): Bucket length in milliseconds
        clock (callable, optional): Returns the current aware datetime
        logger (optional): A structlog logger
    """

    def __init__(
        self,
        data_service,
        fake_key_service,
        signer,
        validation,
        bucket_length,
        clock=utc_now,
        logger=None,
    ):
        self.data_service = data_service
        self.fake_key_service = fake_key_service
        self.signer = signer
        self.validation = validation
        self.bucket_length = bucket_length
        self.clock = clock
        self.log = logger or structlog.get_logger(__name__)

    def published_until(self):
        """Start of the current bucket in milliseconds"""
        return bucket_start_from_millis(millis_from_time(self.clock()), self.bucket_length)

    def expires(self, published_until):
        """End of the bucket starting at published_until as an HTTP date"""
        return rfc1123_date(published_until + self.bucket_length - 1)

    def _exposed_keys(self, key_date, published_after):
        if not self.validation.is_valid_key_date(key_date):
            raise OutOfRangeError("Invalid key date")
        if published_after is not None and not self.validation.is_valid_batch_release_time(
            published_after
        ):
            raise OutOfRangeError("Invalid batch release time")

        published_until = self.published_until()
        keys = self.data_service.get_sorted_exposed_for_key_date(
            key_date, published_after, published_until
        )
        return published_until, keys

    def get_exposed_keys(self, key_date, published_after=None):
        """Signed batch of key_date

        Args:
            key_date (int): UTC midnight in UNIX epoch milliseconds
            published_after (int, optional): Bucket boundary of the last batch
                the client has seen

        Returns:
            :obj:`Publication`: The payload is the signed zip archive, or
            None when no real key has been published

        Raises:
            OutOfRangeError: If key_date or published_after is invalid
        """
        published_until, keys = self._exposed_keys(key_date, published_after)
        expires = self.expires(published_until)
        if not keys:
            return Publication(published_until=published_until, expires=expires)

        keys = self.fake_key_service.fill_up_keys(
            keys, published_after, key_date, published_until
        )
        payload = self.signer.sign(keys, key_date, published_until)

        self.log.debug("exposed_batch_signed", key_date=key_date, keys=len(keys))
        return Publication(
            published_until=published_until,
            expires=expires,
            keys=tuple(keys),
            payload=payload,
        )

    def get_exposed_keys_as_json(self, key_date, published_after=None):
        """Unsigned and unpadded batch of key_date

        See :meth:`get_exposed_keys`. The payload is a :obj:`GaenExposedJson`.
        """
        published_until, keys = self._exposed_keys(key_date, published_after)
        expires = self.expires(published_until)
        if not keys:
            return Publication(published_until=published_until, expires=expires)

        payload = GaenExposedJson(
            gaen_keys=[ExposedKey.from_key(key) for key in keys],
            header=ExposedHeader(
                key_date=key_date,
                published_until=published_until,
                number_of_keys=len(keys),
            ),
        )
        return Publication(
            published_until=published_until,
            expires=expires,
            keys=tuple(keys),
            payload=payload,
        )

    def get_buckets(self, day):
        """List the buckets of day that can be downloaded already

        Args:
            day (str): A UTC day formatted as YYYY-MM-DD

        Returns:
            :obj:`DayBuckets`

        Raises:
            MalformedInputError: If day cannot be parsed
            OutOfRangeError: If day is outside the retention window
        """
        try:
            date = datetime.date.fromisoformat(day)
        except (TypeError, ValueError) as e:
            raise MalformedInputError("Invalid day") from e

        start_of_day = millis_from_time(
            datetime.datetime.combine(date, datetime.time.min, tzinfo=datetime.timezone.utc)
        )
        if not self.validation.is_date_in_range(start_of_day):
            raise OutOfRangeError("Day out of range")

        end = min(millis_from_time(self.clock()), start_of_day + MILLIS_PER_DAY)

        relative_urls = []
        bucket = start_of_day
        while bucket < end:
            relative_urls.append("{}/{}".format(EXPOSED_PATH, bucket))
            bucket += self.bucket_length

        return DayBuckets(day=day, relative_urls=relative_urls, day_timestamp=start_of_day)
