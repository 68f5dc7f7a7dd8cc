"""
Privacy guard of the upload endpoints.

Real and fake uploads must look the same to an observer of the network: the
same status codes, the same headers, and the same response time.
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

import asyncio
import time

from dp3t_backend.config import REQUEST_TIME_MS
from dp3t_backend.errors import ProtocolViolationError


def is_fake_request(fake_principal, key):
    """Whether a key must be dropped as a decoy

    Args:
        fake_principal (bool): Whether the principal of the request is fake
        key (:obj:`GaenKey`): An uploaded key

    Returns:
        bool: True if the principal is fake or the app marked the key as fake
    """
    return fake_principal or key.fake == 1


def check_fake_claim(fake_principal, real_keys):
    """Reject a fake principal that uploads real keys

    A fake token must only ever come with fake keys. Anything else means a
    broken app or a forged token, so the request is refused rather than fixed.

    Args:
        fake_principal (bool): Whether the principal of the request is fake
        real_keys ([:obj:`GaenKey`]): Keys the app did not mark as fake

    Raises:
        ProtocolViolationError: If the principal is fake and real_keys is
            not empty
    """
    if fake_principal and real_keys:
        raise ProtocolViolationError("Claim is fake but list contains non fake keys")


class RequestTimeNormalizer:
    """Pads the processing time of a request up to a fixed budget.

    Usage::

        started = normalizer.start()
        ...  # process the request
        await normalizer.normalize(started)

    Only the awaiting request is suspended, other requests keep running.

    Args:
        request_time (int): Budget in milliseconds
        sleep (coroutine function, optional): Used to wait, default asyncio.sleep
        monotonic (callable, optional): Clock in seconds, default time.monotonic
    """

    def __init__(self, request_time=REQUEST_TIME_MS, sleep=None, monotonic=None):
        self.request_time = request_time
        self.sleep = sleep or asyncio.sleep
        self.monotonic = monotonic or time.monotonic

    def start(self):
        """Mark the start of a request"""
        return self.monotonic()

    def remaining(self, started):
        """Seconds left until the budget is used up, never negative"""
        elapsed = self.monotonic() - started
        return max(self.request_time / 1000 - elapsed, 0)

    async def normalize(self, started):
        """Wait until request_time has elapsed since started"""
        await self.sleep(self.remaining(started))
