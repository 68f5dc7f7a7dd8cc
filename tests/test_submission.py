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
from datetime import datetime, timezone

import pytest

from dp3t_backend.errors import (
    MalformedInputError,
    ProtocolViolationError,
    UnauthorizedError,
)
from dp3t_backend.model import AuthorizationClaim, GaenRequest, GaenSecondDay
from dp3t_backend.privacy import RequestTimeNormalizer
from dp3t_backend.protocols.submission import GaenSubmissionProtocol
from dp3t_backend.services.identity import JwtRequestValidator
from dp3t_backend.services.storage import InMemoryGaenDataService
from dp3t_backend.validation import ValidationUtils

from conftest import (
    NEXT_BUCKET_MS,
    TODAY_INTERVAL,
    YESTERDAY_INTERVAL,
    YESTERDAY_MS,
    make_key,
)

HEALTH_AUTHORITY = AuthorizationClaim(subject="alice", scope="exposed", verified=True)
FAKE_HEALTH_AUTHORITY = AuthorizationClaim(
    subject="alice", scope="exposed", fake=True, verified=True
)

ANDROID = "ch.admin.bag.dp3t;1.0;android"
IOS = "ch.admin.bag.dp3t;1.0;iOS"


class CountingStorage(InMemoryGaenDataService):
    def __init__(self):
        super().__init__()
        self.calls = 0

    def upsert_exposees(self, keys, received_at):
        self.calls += 1
        super().upsert_exposees(keys, received_at)


@pytest.fixture
def storage():
    return CountingStorage()


@pytest.fixture
def protocol(storage, token_service, clock, sleep, logger):
    return GaenSubmissionProtocol(
        storage,
        JwtRequestValidator(clock=clock),
        token_service,
        ValidationUtils(clock=clock),
        RequestTimeNormalizer(1500, sleep=sleep, monotonic=lambda: 0.0),
        clock=clock,
        logger=logger,
    )


def stored_keys(storage):
    return storage.get_sorted_exposed_for_key_date(YESTERDAY_MS, None, NEXT_BUCKET_MS)


def day_one(keys, delayed_key_date=TODAY_INTERVAL):
    return GaenRequest(gaen_keys=keys, delayed_key_date=delayed_key_date)


######################
### TEST FIRST DAY ###
######################


def test_real_keys_are_stored(protocol, storage):
    request = day_one([make_key(1), make_key(2)])
    outcome = asyncio.run(protocol.add_exposed(request, ANDROID, HEALTH_AUTHORITY))

    assert outcome.persisted == 2
    assert stored_keys(storage) == [make_key(1), make_key(2)]
    assert storage.calls == 1


def test_fake_keys_are_dropped(protocol, storage):
    request = day_one([make_key(1), make_key(2, fake=1)])
    asyncio.run(protocol.add_exposed(request, ANDROID, HEALTH_AUTHORITY))

    assert stored_keys(storage) == [make_key(1)]


def test_fake_principal_stores_nothing(protocol, storage):
    request = day_one([make_key(1, fake=1), make_key(2, fake=1)])
    outcome = asyncio.run(protocol.add_exposed(request, ANDROID, FAKE_HEALTH_AUTHORITY))

    assert outcome.persisted == 0
    assert storage.calls == 0
    assert outcome.token is not None


def test_rolling_period_zero_is_stored_as_default(protocol, storage, logger):
    request = day_one([make_key(1, rolling_period=0)])
    asyncio.run(protocol.add_exposed(request, ANDROID, HEALTH_AUTHORITY))

    assert stored_keys(storage)[0].rolling_period == 144
    assert not [event for event in logger.events if event[0] == "error"]


def test_rolling_period_zero_from_ios_is_logged(protocol, logger):
    request = day_one([make_key(1, rolling_period=0)])
    asyncio.run(protocol.add_exposed(request, IOS, HEALTH_AUTHORITY))

    errors = [event for (level, event, _) in logger.events if level == "error"]
    assert errors == ["rolling_period_zero_from_ios"]


def test_negative_rolling_period_is_rejected(protocol, storage):
    request = day_one([make_key(1), make_key(2, rolling_period=-1)])
    with pytest.raises(MalformedInputError):
        asyncio.run(protocol.add_exposed(request, ANDROID, HEALTH_AUTHORITY))

    assert storage.calls == 0


def test_invalid_base64_is_rejected(protocol, storage):
    bad_key = make_key(1).model_copy(update={"key_data": "not a key"})
    with pytest.raises(MalformedInputError):
        asyncio.run(protocol.add_exposed(day_one([bad_key]), ANDROID, HEALTH_AUTHORITY))

    assert storage.calls == 0


def test_invalid_base64_of_fake_key_is_rejected(protocol):
    bad_key = make_key(1, fake=1).model_copy(update={"key_data": "AAAA"})
    with pytest.raises(MalformedInputError):
        asyncio.run(protocol.add_exposed(day_one([bad_key]), ANDROID, HEALTH_AUTHORITY))


def test_key_from_the_future_is_rejected(protocol, storage):
    request = day_one([make_key(1, rolling_start_number=TODAY_INTERVAL + 144)])
    with pytest.raises(MalformedInputError):
        asyncio.run(protocol.add_exposed(request, ANDROID, HEALTH_AUTHORITY))

    assert storage.calls == 0


def test_unauthorized_claim_is_rejected(protocol, storage, sleep):
    claims = [
        None,
        AuthorizationClaim.anonymous(),
        AuthorizationClaim(scope="currentDayExposed", verified=True),
    ]
    for claim in claims:
        with pytest.raises(UnauthorizedError):
            asyncio.run(protocol.add_exposed(day_one([make_key(1)]), ANDROID, claim))

    assert storage.calls == 0
    # Rejections are not delayed
    assert sleep.calls == []


@pytest.mark.parametrize("delayed_key_date", [YESTERDAY_INTERVAL, TODAY_INTERVAL, TODAY_INTERVAL + 144])
def test_delayed_key_date_between_yesterday_and_tomorrow(protocol, delayed_key_date):
    request = day_one([make_key(1)], delayed_key_date=delayed_key_date)
    asyncio.run(protocol.add_exposed(request, ANDROID, HEALTH_AUTHORITY))


@pytest.mark.parametrize(
    "delayed_key_date", [YESTERDAY_INTERVAL - 1, TODAY_INTERVAL + 2 * 144]
)
def test_delayed_key_date_out_of_window(protocol, storage, delayed_key_date):
    request = day_one([make_key(1)], delayed_key_date=delayed_key_date)
    with pytest.raises(MalformedInputError):
        asyncio.run(protocol.add_exposed(request, ANDROID, HEALTH_AUTHORITY))

    assert storage.calls == 0


@pytest.mark.parametrize("delayed_key_date", [10 ** 15, -(10 ** 15)])
def test_delayed_key_date_beyond_calendar(protocol, storage, sleep, delayed_key_date):
    request = day_one([make_key(1)], delayed_key_date=delayed_key_date)
    with pytest.raises(MalformedInputError):
        asyncio.run(protocol.add_exposed(request, ANDROID, HEALTH_AUTHORITY))

    assert storage.calls == 0
    assert sleep.calls == []


def test_fake_principal_with_unmarked_keys_is_rejected(protocol, storage):
    request = day_one([make_key(1, fake=1), make_key(2)])
    with pytest.raises(ProtocolViolationError):
        asyncio.run(protocol.add_exposed(request, ANDROID, FAKE_HEALTH_AUTHORITY))

    assert storage.calls == 0


def test_second_day_token(protocol, token_service, clock):
    outcome = asyncio.run(
        protocol.add_exposed(day_one([make_key(1)]), ANDROID, HEALTH_AUTHORITY)
    )
    claims = token_service.verify(outcome.token)

    assert claims["sub"] == "alice"
    assert claims["scope"] == "currentDayExposed"
    assert claims["delayedKeyDate"] == TODAY_INTERVAL
    assert "fake" not in claims

    # Valid for 48 hours from the start of the delayed key date
    expiration = datetime(2020, 10, 20, tzinfo=timezone.utc)
    assert claims["exp"] == int(expiration.timestamp())


def test_second_day_token_keeps_fake_flag(protocol, token_service):
    request = day_one([make_key(1, fake=1)])
    outcome = asyncio.run(protocol.add_exposed(request, ANDROID, FAKE_HEALTH_AUTHORITY))

    assert token_service.verify(outcome.token)["fake"] == "1"


def test_no_token_for_anonymous_principal(storage, token_service, clock, sleep):
    protocol = GaenSubmissionProtocol(
        storage,
        JwtRequestValidator(auth_required=False, clock=clock),
        token_service,
        ValidationUtils(clock=clock),
        RequestTimeNormalizer(1500, sleep=sleep),
        clock=clock,
    )
    request = day_one([make_key(1)])
    outcome = asyncio.run(protocol.add_exposed(request, ANDROID, AuthorizationClaim.anonymous()))

    assert outcome.token is None
    assert outcome.persisted == 1


def test_real_and_fake_uploads_take_the_same_time(protocol, sleep):
    asyncio.run(protocol.add_exposed(day_one([make_key(1)]), ANDROID, HEALTH_AUTHORITY))
    asyncio.run(
        protocol.add_exposed(day_one([make_key(2, fake=1)]), ANDROID, FAKE_HEALTH_AUTHORITY)
    )

    assert sleep.calls == [1.5, 1.5]


#######################
### TEST SECOND DAY ###
#######################


def second_day_claim(delayed_key_date=YESTERDAY_INTERVAL, fake=False):
    return AuthorizationClaim(
        subject="alice",
        scope="currentDayExposed",
        fake=fake,
        delayed_key_date=delayed_key_date,
        verified=True,
    )


def test_delayed_key_is_stored(protocol, storage, sleep):
    request = GaenSecondDay(delayed_key=make_key(3))
    outcome = asyncio.run(protocol.add_exposed_second(request, ANDROID, second_day_claim()))

    assert outcome.persisted == 1
    assert outcome.token is None
    assert stored_keys(storage) == [make_key(3)]
    assert sleep.calls == [1.5]


def test_delayed_key_with_zero_rolling_period(protocol, storage):
    request = GaenSecondDay(delayed_key=make_key(3, rolling_period=0))
    asyncio.run(protocol.add_exposed_second(request, ANDROID, second_day_claim()))

    assert stored_keys(storage)[0].rolling_period == 144


def test_delayed_key_with_negative_rolling_period(protocol, storage):
    request = GaenSecondDay(delayed_key=make_key(3, rolling_period=-5))
    with pytest.raises(MalformedInputError):
        asyncio.run(protocol.add_exposed_second(request, ANDROID, second_day_claim()))

    assert storage.calls == 0


def test_fake_delayed_key_is_dropped(protocol, storage, sleep):
    request = GaenSecondDay(delayed_key=make_key(3))
    outcome = asyncio.run(
        protocol.add_exposed_second(request, ANDROID, second_day_claim(fake=True))
    )

    assert outcome.persisted == 0
    assert storage.calls == 0
    assert sleep.calls == [1.5]


def test_delayed_key_without_bound_date_is_forbidden(protocol, storage):
    request = GaenSecondDay(delayed_key=make_key(3))
    for claim in [None, HEALTH_AUTHORITY, AuthorizationClaim.anonymous()]:
        with pytest.raises(UnauthorizedError):
            asyncio.run(protocol.add_exposed_second(request, ANDROID, claim))

    assert storage.calls == 0


def test_delayed_key_of_other_date_is_rejected(protocol, storage):
    request = GaenSecondDay(delayed_key=make_key(3, rolling_start_number=TODAY_INTERVAL))
    with pytest.raises(MalformedInputError):
        asyncio.run(protocol.add_exposed_second(request, ANDROID, second_day_claim()))

    assert storage.calls == 0


def test_invalid_delayed_key_is_rejected_before_claim_check(protocol):
    bad_key = make_key(3).model_copy(update={"key_data": "%%%"})
    with pytest.raises(MalformedInputError):
        asyncio.run(protocol.add_exposed_second(GaenSecondDay(delayed_key=bad_key), ANDROID, None))
