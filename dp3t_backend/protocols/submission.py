"""
Two phase upload of diagnosis keys.

On the first day the app uploads the keys of the past days together with the
date of the current day's key, which is still in use. The backend answers with
a token bound to that date. On the second day the app uploads the now expired
key with this token.
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
import uuid

import structlog

from dp3t_backend.config import CURRENT_DAY_EXPOSED_SCOPE, SECOND_DAY_TOKEN_LIFETIME
from dp3t_backend.errors import MalformedInputError, UnauthorizedError
from dp3t_backend.model import SubmissionOutcome, date_from_interval, millis_from_time
from dp3t_backend.privacy import check_fake_claim, is_fake_request
from dp3t_backend.validation import normalize_rolling_period, utc_now


#: Token issuer written into day-2 tokens
TOKEN_ISSUER = "dpppt-sdk-backend"


class GaenSubmissionProtocol:
    """Validates uploads, stores real keys and hands out day-2 tokens.

    Every accepted upload takes at least the request time of the normalizer,
    whether it contained real keys or only fake ones. Rejections are raised
    as :class:`dp3t_backend.errors.GaenRequestError` and are not delayed.

    Args:
        data_service: Storage of the real keys
        request_validator: Authorization decisions on claims
        token_service: Issues the day-2 tokens
        validation (:obj:`ValidationUtils`): Checks on keys
        normalizer (:obj:`RequestTimeNormalizer`): Pads response times
        clock (callable, optional): Returns the current aware datetime
        issuer (str, optional): Issuer of day-2 tokens
        logger (optional): A structlog logger
    """

    def __init__(
        self,
        data_service,
        request_validator,
        token_service,
        validation,
        normalizer,
        clock=utc_now,
        issuer=TOKEN_ISSUER,
        logger=None,
    ):
        self.data_service = data_service
        self.request_validator = request_validator
        self.token_service = token_service
        self.validation = validation
        self.normalizer = normalizer
        self.clock = clock
        self.issuer = issuer
        self.log = logger or structlog.get_logger(__name__)

    def _normalize_rolling_period(self, key, user_agent):
        # Only Android is known to send 0
        if key.rolling_period == 0 and "ios" in user_agent.lower():
            self.log.error("rolling_period_zero_from_ios", user_agent=user_agent)
        return normalize_rolling_period(key)

    def _check_key_data(self, key):
        if not self.validation.is_valid_base64_key(key.key_data):
            raise MalformedInputError("No valid base64 key")

    def _check_delayed_key_date(self, delayed_key_interval, now):
        """Return the UTC date of delayed_key_interval

        Raises:
            MalformedInputError: If the date is not between yesterday and
                tomorrow
        """
        try:
            delayed_key_date = date_from_interval(delayed_key_interval)
        except (OverflowError, OSError, ValueError) as e:
            raise MalformedInputError("delayedKeyDate is not a valid date") from e

        today = now.date()
        one_day = datetime.timedelta(days=1)
        if not today - one_day <= delayed_key_date <= today + one_day:
            raise MalformedInputError(
                "delayedKeyDate date must be between yesterday and tomorrow"
            )
        return delayed_key_date

    def _second_day_token(self, claim, delayed_key_interval, delayed_key_date, now):
        day_start = datetime.datetime.combine(
            delayed_key_date, datetime.time.min, tzinfo=datetime.timezone.utc
        )
        expiration = day_start + SECOND_DAY_TOKEN_LIFETIME

        claims = {
            "jti": str(uuid.uuid4()),
            "iat": int(now.timestamp()),
            "iss": self.issuer,
            "sub": claim.subject,
            "exp": int(expiration.timestamp()),
            "scope": CURRENT_DAY_EXPOSED_SCOPE,
            "delayedKeyDate": delayed_key_interval,
        }
        if claim.fake:
            claims["fake"] = "1"

        return self.token_service.issue(claims)

    async def add_exposed(self, request, user_agent, claim):
        """Day-1 upload

        Args:
            request (:obj:`GaenRequest`): Keys of the past days
            user_agent (str): User-Agent of the app
            claim (:obj:`AuthorizationClaim`): Principal of the request

        Returns:
            :obj:`SubmissionOutcome`: With the day-2 token for verified principals

        Raises:
            UnauthorizedError: If the principal may not upload keys
            MalformedInputError: On invalid keys or dates
            ProtocolViolationError: If a fake principal uploads real keys
        """
        started = self.normalizer.start()

        if not self.request_validator.is_authorized(claim):
            raise UnauthorizedError("Request not valid")

        fake_principal = self.request_validator.is_fake(claim)
        real_keys = []
        unmarked_keys = []
        for key in request.gaen_keys:
            self._check_key_data(key)
            if key.fake != 1:
                unmarked_keys.append(key)
            if is_fake_request(fake_principal, key):
                continue

            self.request_validator.extract_key_date(claim, key)
            real_keys.append(self._normalize_rolling_period(key, user_agent))

        # A fake principal must mark every key it sends as fake
        check_fake_claim(fake_principal, unmarked_keys)

        now = self.clock()
        delayed_key_date = self._check_delayed_key_date(request.delayed_key_date, now)

        if real_keys:
            self.data_service.upsert_exposees(real_keys, millis_from_time(now))

        token = None
        if claim.verified:
            token = self._second_day_token(
                claim, request.delayed_key_date, delayed_key_date, now
            )

        self.log.info("exposed_keys_accepted", real_keys=len(real_keys))
        await self.normalizer.normalize(started)
        return SubmissionOutcome(token=token, persisted=len(real_keys))

    async def add_exposed_second(self, request, user_agent, claim):
        """Day-2 upload of the key announced on the first day

        Args:
            request (:obj:`GaenSecondDay`): The delayed key
            user_agent (str): User-Agent of the app
            claim (:obj:`AuthorizationClaim`): Principal of the request

        Raises:
            MalformedInputError: On an invalid key or a key that does not
                start on the date bound to the claim
            UnauthorizedError: If the claim is not bound to a date
        """
        started = self.normalizer.start()
        key = request.delayed_key

        self._check_key_data(key)

        if claim is None or claim.delayed_key_date is None:
            raise UnauthorizedError("claim does not contain delayedKeyDate")

        if key.rolling_start_number != claim.delayed_key_date:
            raise MalformedInputError("keyDate does not match claim keyDate")

        persisted = 0
        if not is_fake_request(self.request_validator.is_fake(claim), key):
            key = self._normalize_rolling_period(key, user_agent)
            self.data_service.upsert_exposees([key], millis_from_time(self.clock()))
            persisted = 1

        self.log.info("delayed_key_accepted", real_keys=persisted)
        await self.normalizer.normalize(started)
        return SubmissionOutcome(persisted=persisted)
