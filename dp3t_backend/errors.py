"""
Exceptions raised by the submission and publication protocols.

Every protocol rejection is a :class:`GaenRequestError`. The HTTP layer maps
the concrete class to a status code, nothing else needs to know about HTTP.
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


class GaenRequestError(ValueError):
    """Base class of all protocol rejections"""

    status_code = 400


class MalformedInputError(GaenRequestError):
    """Bad key encoding, negative rolling period, mismatching dates"""

    status_code = 400


class ProtocolViolationError(MalformedInputError):
    """A fake claim that nevertheless carries real keys"""


class UnauthorizedError(GaenRequestError):
    """The claim is missing, invalid, or has the wrong scope"""

    status_code = 403


class OutOfRangeError(GaenRequestError):
    """A date or watermark outside the retention window.

    Reported as "not found" so that the retention bounds are not revealed.
    """

    status_code = 404


class InvalidTokenError(ValueError):
    """A bearer token that cannot be decoded or whose signature does not verify"""
