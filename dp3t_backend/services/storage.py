"""
Storage of uploaded keys.

*Example only.* The in-memory store keeps everything in a dictionary guarded
by a lock. Deployments plug in a database backed implementation of
:class:`GaenDataService`.
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

import threading
from typing import List, Optional, Protocol, Sequence

from dp3t_backend.config import MILLIS_PER_DAY
from dp3t_backend.model import GaenKey


class GaenDataService(Protocol):
    def upsert_exposees(self, keys: Sequence[GaenKey], received_at: int) -> None:
        """Store keys atomically, ignoring keys that are already stored"""

    def get_sorted_exposed_for_key_date(
        self, key_date: int, published_after: Optional[int], published_until: int
    ) -> List[GaenKey]:
        """Keys starting on the day key_date, received in (after, until]"""


class InMemoryGaenDataService:
    """Keeps keys in memory, indexed by key data.

    Keys are returned in order of insertion, which keeps repeated queries over
    the same window stable.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._exposed = {}
        self._counter = 0

    def __len__(self):
        return len(self._exposed)

    def upsert_exposees(self, keys, received_at):
        """Store keys with their reception time

        Args:
            keys ([:obj:`GaenKey`]): Keys to store
            received_at (int): Reception time in UNIX epoch milliseconds
        """
        with self._lock:
            for key in keys:
                if key.key_data in self._exposed:
                    continue
                self._counter += 1
                self._exposed[key.key_data] = (self._counter, received_at, key)

    def get_sorted_exposed_for_key_date(self, key_date, published_after, published_until):
        """Return the keys that are published for key_date

        Args:
            key_date (int): UTC midnight in UNIX epoch milliseconds
            published_after (int, optional): Exclusive lower bound on reception
            published_until (int): Inclusive upper bound on reception
        """
        day_end = key_date + MILLIS_PER_DAY

        with self._lock:
            rows = sorted(self._exposed.values(), key=lambda row: row[0])

        return [
            key
            for (_, received_at, key) in rows
            if key_date <= key.key_date < day_end
            and received_at <= published_until
            and (published_after is None or received_at > published_after)
        ]
