"""
Data model of the GAEN submission and publication protocol.

A note on time representation:
 * Wire timestamps are milliseconds since the UNIX epoch (``keyDate``,
   ``publishedafter``, ``X-PUBLISHED-UNTIL``)
 * Key timestamps are 10-minute intervals since the UNIX epoch
   (``rollingStartNumber``, ``delayedKeyDate``)
 * All days are UTC days

Internal code works on integer milliseconds. External facing helpers accept
timezone aware :obj:`datetime.datetime` objects.
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
from dataclasses import dataclass
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from dp3t_backend.config import MILLIS_PER_DAY, TEN_MINUTES_MS
from dp3t_backend.errors import InvalidTokenError


#########################
### UTILITY FUNCTIONS ###
#########################


def millis_from_time(time):
    """Return the UNIX epoch milliseconds of a datetime

    Args:
        time (:obj:`datetime.datetime`): A timezone aware datetime
    """
    return int(time.timestamp() * 1000)


def time_from_millis(millis):
    """Return the UTC datetime of UNIX epoch milliseconds"""
    return datetime.datetime.fromtimestamp(millis / 1000, tz=datetime.timezone.utc)


def day_start_from_millis(millis):
    """Return the first UNIX epoch millisecond of the UTC day containing millis"""
    return (millis // MILLIS_PER_DAY) * MILLIS_PER_DAY


def bucket_start_from_millis(millis, bucket_length):
    """Return the start of the bucket containing millis

    Args:
        millis (int): A timestamp in UNIX epoch milliseconds
        bucket_length (int): Bucket length in milliseconds
    """
    return millis - (millis % bucket_length)


def millis_from_interval(interval):
    """Convert a count of 10-minute intervals into UNIX epoch milliseconds"""
    return interval * TEN_MINUTES_MS


def date_from_interval(interval):
    """Return the UTC calendar date of a count of 10-minute intervals"""
    return time_from_millis(millis_from_interval(interval)).date()


##################
### WIRE TYPES ###
##################


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )


class GaenKey(_WireModel):
    """A temporary exposure key as uploaded by the app.

    The key is immutable, normalization returns a modified copy.
    """

    key_data: str
    rolling_start_number: int
    rolling_period: int
    transmission_risk_level: int
    fake: int = 0

    @property
    def key_date(self):
        """Start of the key's validity in UNIX epoch milliseconds"""
        return millis_from_interval(self.rolling_start_number)


class GaenRequest(_WireModel):
    """Day-1 upload: the keys of the past days and the date of today's key"""

    gaen_keys: List[GaenKey]
    delayed_key_date: int


class GaenSecondDay(_WireModel):
    """Day-2 upload: the key of the day of the first upload"""

    delayed_key: GaenKey


class ExposedKey(_WireModel):
    """Published projection of a key, without the fake flag"""

    key_data: str
    rolling_start_number: int
    rolling_period: int
    transmission_risk_level: int

    @classmethod
    def from_key(cls, key):
        return cls(
            key_data=key.key_data,
            rolling_start_number=key.rolling_start_number,
            rolling_period=key.rolling_period,
            transmission_risk_level=key.transmission_risk_level,
        )


class ExposedHeader(_WireModel):
    key_date: int
    published_until: int
    number_of_keys: int


class GaenExposedJson(_WireModel):
    gaen_keys: List[ExposedKey]
    header: ExposedHeader


class DayBuckets(_WireModel):
    day: str
    relative_urls: List[str] = Field(default_factory=list)
    day_timestamp: int


######################
### INTERNAL TYPES ###
######################


@dataclass(frozen=True)
class AuthorizationClaim:
    """The authenticated principal of a request.

    Resolved once from the bearer token at the HTTP boundary.

    Attributes:
        subject (str): Subject of the token
        scope (str, optional): Scope the token was issued for
        fake (bool): Whether the whole request must be treated as synthetic
        delayed_key_date (int, optional): The rolling start number the
            principal may finalize on day two
        verified (bool): False for the anonymous principal of development mode
    """

    subject: Optional[str] = None
    scope: Optional[str] = None
    fake: bool = False
    delayed_key_date: Optional[int] = None
    verified: bool = False

    @classmethod
    def from_token_claims(cls, claims):
        """Build the claim from the payload of a verified token

        Args:
            claims (dict): Decoded token payload

        Raises:
            InvalidTokenError: If delayedKeyDate is not an integer
        """
        delayed_key_date = claims.get("delayedKeyDate")
        if delayed_key_date is not None:
            try:
                delayed_key_date = int(delayed_key_date)
            except (TypeError, ValueError) as e:
                raise InvalidTokenError("delayedKeyDate is not an integer") from e

        return cls(
            subject=claims.get("sub"),
            scope=claims.get("scope"),
            fake=str(claims.get("fake", "0")) == "1",
            delayed_key_date=delayed_key_date,
            verified=True,
        )

    @classmethod
    def anonymous(cls):
        """Principal of unauthenticated requests when authorization is disabled"""
        return cls(scope=None, verified=False)


@dataclass(frozen=True)
class Publication:
    """Outcome of a publication request.

    Attributes:
        published_until (int): Bucket boundary in UNIX epoch milliseconds
        expires (str): RFC 1123 date of the end of the current bucket
        keys (list): The published keys, empty for 204 responses
        payload: Signed zip bytes or :class:`GaenExposedJson`, None when empty
    """

    published_until: int
    expires: str
    keys: tuple = ()
    payload: object = None

    @property
    def is_empty(self):
        return self.payload is None


@dataclass(frozen=True)
class SubmissionOutcome:
    """Outcome of a successful upload.

    Attributes:
        token (str, optional): Day-2 token to hand to the client
        persisted (int): Number of keys written to storage
    """

    token: Optional[str] = None
    persisted: int = 0
