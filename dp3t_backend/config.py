"""
Global constants and deployment settings of the GAEN backend.
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

from datetime import timedelta

from pydantic_settings import BaseSettings, SettingsConfigDict


#: For how many days we should store and publish keys
RETENTION_PERIOD = 21

#: Length of a temporary exposure key in bytes
KEY_LENGTH = 16

#: Rolling period assumed when a client sends 0 (one full day)
ROLLING_PERIOD_DEFAULT = 144

#: Length of the GAEN interval unit in milliseconds
TEN_MINUTES_MS = 10 * 60 * 1000

#: Milliseconds in a UNIX Epoch day
MILLIS_PER_DAY = 24 * 60 * 60 * 1000

#: Length of a publication bucket (2 hours)
BUCKET_LENGTH_MS = 2 * 60 * 60 * 1000

#: Minimal duration of every submission request
REQUEST_TIME_MS = 1500

#: Lifetime of the day-2 token, counted from the start of the delayed key date
SECOND_DAY_TOKEN_LIFETIME = timedelta(hours=48)

#: Number of fake keys generated per day by the padding service
FAKE_KEYS_PER_DAY = 10

#: Scope a health-authority token must carry to upload keys
EXPOSED_SCOPE = "exposed"

#: Scope of the token handed out for the second day upload
CURRENT_DAY_EXPOSED_SCOPE = "currentDayExposed"


class GaenSettings(BaseSettings):
    """Deployment settings, read from ``DP3T_*`` environment variables."""

    model_config = SettingsConfigDict(env_prefix="DP3T_")

    bucket_length_ms: int = BUCKET_LENGTH_MS
    request_time_ms: int = REQUEST_TIME_MS
    retention_days: int = RETENTION_PERIOD
    auth_required: bool = True
    fake_keys_enabled: bool = True
    fake_keys_per_day: int = FAKE_KEYS_PER_DAY
    token_issuer: str = "dpppt-sdk-backend"
    environment: str = "production"
    log_level: str = "INFO"
