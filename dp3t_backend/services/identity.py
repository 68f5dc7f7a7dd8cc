"""
Claim tokens and authorization of uploads.

Tokens are compact JWS objects (``header.payload.signature``, base64url
encoded) signed with ECDSA P-256/SHA-256 (``ES256``). Health authorities issue
``exposed`` tokens for the first upload. The backend itself issues the
``currentDayExposed`` token for the second day upload and therefore trusts its
own key in addition to the health authority keys.
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
import json
from typing import Protocol

from Cryptodome.Hash import SHA256
from Cryptodome.PublicKey import ECC
from Cryptodome.Signature import DSS

from dp3t_backend.config import EXPOSED_SCOPE, MILLIS_PER_DAY, RETENTION_PERIOD
from dp3t_backend.errors import InvalidTokenError, MalformedInputError
from dp3t_backend.model import millis_from_time
from dp3t_backend.validation import utc_now


TOKEN_HEADER = {"alg": "ES256", "typ": "JWT"}


class RequestValidator(Protocol):
    def is_authorized(self, claim) -> bool:
        ...

    def is_fake(self, claim) -> bool:
        ...

    def extract_key_date(self, claim, key) -> int:
        ...


def b64url_encode(data):
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(text):
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


class ClaimTokenService:
    """Issues and verifies ES256 claim tokens.

    Args:
        signing_key (:obj:`Cryptodome.PublicKey.ECC.EccKey`, optional): Key for
            tokens issued by this backend. Generated when missing.
        trusted_keys (list, optional): Public keys of health authorities
        clock (callable, optional): Returns the current aware datetime
    """

    def __init__(self, signing_key=None, trusted_keys=(), clock=utc_now):
        if signing_key is None:
            signing_key = ECC.generate(curve="P-256")

        self.signing_key = signing_key
        self.trusted_keys = [signing_key.public_key()] + list(trusted_keys)
        self.clock = clock

    @staticmethod
    def sign_claims(claims, key):
        """Encode and sign claims with key"""
        header = b64url_encode(json.dumps(TOKEN_HEADER).encode("utf-8"))
        payload = b64url_encode(json.dumps(claims, sort_keys=True).encode("utf-8"))
        signing_input = "{}.{}".format(header, payload).encode("ascii")

        signer = DSS.new(key, "fips-186-3", encoding="binary")
        signature = signer.sign(SHA256.new(signing_input))
        return "{}.{}.{}".format(header, payload, b64url_encode(signature))

    def issue(self, claims):
        """Return a token carrying claims, signed with the backend key"""
        return self.sign_claims(claims, self.signing_key)

    def verify(self, token):
        """Return the claims of a valid token

        Args:
            token (str): A compact JWS

        Raises:
            InvalidTokenError: If the token is malformed, carries an unexpected
                algorithm, has no trusted signature or is expired
        """
        try:
            header_part, payload_part, signature_part = token.split(".")
            header = json.loads(b64url_decode(header_part))
            claims = json.loads(b64url_decode(payload_part))
            signature = b64url_decode(signature_part)
        except (ValueError, binascii.Error) as e:
            raise InvalidTokenError("Malformed token") from e

        if not isinstance(header, dict) or not isinstance(claims, dict):
            raise InvalidTokenError("Token parts are not objects")
        if header.get("alg") != TOKEN_HEADER["alg"]:
            raise InvalidTokenError("Unexpected token algorithm")

        digest = SHA256.new("{}.{}".format(header_part, payload_part).encode("ascii"))
        if not any(self._verifies(key, digest, signature) for key in self.trusted_keys):
            raise InvalidTokenError("Token signature does not verify")

        expiration = claims.get("exp")
        if expiration is not None and not isinstance(expiration, (int, float)):
            raise InvalidTokenError("Malformed expiration")
        if expiration is not None and expiration <= self.clock().timestamp():
            raise InvalidTokenError("Token expired")

        return claims

    @staticmethod
    def _verifies(key, digest, signature):
        try:
            DSS.new(key, "fips-186-3", encoding="binary").verify(digest, signature)
        except ValueError:
            return False
        return True


class JwtRequestValidator:
    """Authorization decisions on resolved claims.

    Args:
        retention_days (int): Number of past days keys may start on
        auth_required (bool): When False, the anonymous principal is accepted
        clock (callable, optional): Returns the current aware datetime
    """

    def __init__(self, retention_days=RETENTION_PERIOD, auth_required=True, clock=utc_now):
        self.retention_days = retention_days
        self.auth_required = auth_required
        self.clock = clock

    def is_authorized(self, claim):
        if claim is None:
            return False
        if not claim.verified:
            return not self.auth_required
        return claim.scope == EXPOSED_SCOPE

    def is_fake(self, claim):
        return claim is not None and claim.fake

    def extract_key_date(self, claim, key):
        """Return the start of key in milliseconds

        Raises:
            MalformedInputError: If the key starts in the future or before the
                retention window
        """
        now = millis_from_time(self.clock())
        key_date = key.key_date

        if key_date > now:
            raise MalformedInputError("Key date is in the future")
        if key_date < now - self.retention_days * MILLIS_PER_DAY:
            raise MalformedInputError("Key date is before the retention period")
        return key_date
