"""
HTTP interface of the GAEN backend.

The routes only translate between HTTP and the protocol classes. Bearer
tokens are resolved into an :class:`AuthorizationClaim` by a dependency, and
protocol rejections are mapped to status codes by the exception handlers
installed in :func:`create_app`.
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

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from dp3t_backend.config import GaenSettings
from dp3t_backend.errors import GaenRequestError, OutOfRangeError
from dp3t_backend.model import AuthorizationClaim, GaenRequest, GaenSecondDay
from dp3t_backend.observability import RequestLoggingMiddleware, configure_logging
from dp3t_backend.privacy import RequestTimeNormalizer
from dp3t_backend.protocols.publication import GaenPublicationProtocol
from dp3t_backend.protocols.submission import GaenSubmissionProtocol
from dp3t_backend.services.fakekeys import RandomFakeKeyService
from dp3t_backend.services.identity import ClaimTokenService, JwtRequestValidator
from dp3t_backend.services.signing import EcdsaBatchSigner
from dp3t_backend.services.storage import InMemoryGaenDataService
from dp3t_backend.validation import ValidationUtils, utc_now

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/v1/gaen")

BEARER_PREFIX = "bearer "


def resolve_claim(
    request: Request, authorization: Optional[str] = Header(None)
) -> Optional[AuthorizationClaim]:
    """Turn the bearer token of a request into a claim

    Returns None when there is no valid token. Without a token and with
    authorization disabled, the anonymous claim is returned instead.
    """
    state = request.app.state

    if authorization and authorization.lower().startswith(BEARER_PREFIX):
        token = authorization[len(BEARER_PREFIX) :].strip()
        try:
            return AuthorizationClaim.from_token_claims(state.token_service.verify(token))
        except ValueError as e:
            log.info("bearer_token_rejected", reason=str(e))
            return None

    if not state.settings.auth_required:
        return AuthorizationClaim.anonymous()
    return None


def publication_headers(publication):
    return {
        "X-PUBLISHED-UNTIL": str(publication.published_until),
        "Expires": publication.expires,
    }


@router.post("/exposed")
async def add_exposed(
    body: GaenRequest,
    request: Request,
    user_agent: str = Header(...),
    claim: Optional[AuthorizationClaim] = Depends(resolve_claim),
):
    outcome = await request.app.state.submission.add_exposed(body, user_agent, claim)

    headers = {}
    if outcome.token is not None:
        bearer = "Bearer {}".format(outcome.token)
        headers["Authorization"] = bearer
        headers["X-Exposed-Token"] = bearer
    return PlainTextResponse("OK", headers=headers)


@router.post("/exposednextday")
async def add_exposed_second(
    body: GaenSecondDay,
    request: Request,
    user_agent: str = Header(...),
    claim: Optional[AuthorizationClaim] = Depends(resolve_claim),
):
    await request.app.state.submission.add_exposed_second(body, user_agent, claim)
    return PlainTextResponse("OK")


@router.get("/exposed/{key_date}")
def get_exposed_keys(key_date: int, request: Request, publishedafter: Optional[int] = None):
    publication = request.app.state.publication.get_exposed_keys(key_date, publishedafter)
    headers = publication_headers(publication)
    if publication.is_empty:
        return Response(status_code=204, headers=headers)
    return Response(
        content=publication.payload, media_type="application/zip", headers=headers
    )


@router.get("/exposedjson/{key_date}")
def get_exposed_keys_as_json(
    key_date: int, request: Request, publishedafter: Optional[int] = None
):
    publication = request.app.state.publication.get_exposed_keys_as_json(
        key_date, publishedafter
    )
    headers = publication_headers(publication)
    if publication.is_empty:
        return Response(status_code=204, headers=headers)
    return JSONResponse(publication.payload.model_dump(by_alias=True), headers=headers)


@router.get("/buckets/{day}")
def get_buckets(day: str, request: Request):
    buckets = request.app.state.publication.get_buckets(day)
    return JSONResponse(buckets.model_dump(by_alias=True))


async def handle_gaen_request_error(request, exc):
    log.info(
        "request_rejected",
        path=request.url.path,
        status_code=exc.status_code,
        reason=str(exc),
    )
    # Not found must look like any other missing resource
    if isinstance(exc, OutOfRangeError):
        return Response(status_code=exc.status_code)
    return PlainTextResponse(str(exc), status_code=exc.status_code)


async def handle_validation_error(request, exc):
    log.info("request_malformed", path=request.url.path, errors=len(exc.errors()))
    return Response(status_code=400)


def create_app(
    settings=None,
    data_service=None,
    fake_key_service=None,
    signer=None,
    token_service=None,
    request_validator=None,
    clock=utc_now,
    sleep=None,
    configure=True,
):
    """Build the application with its collaborators

    Collaborators that are not given are replaced by the in-memory reference
    implementations.

    Args:
        settings (:obj:`GaenSettings`, optional): Read from the environment
            when missing
        data_service (optional): Storage of real keys
        fake_key_service (optional): Padding of published batches
        signer (optional): Signing of binary batches
        token_service (optional): Issuance and verification of tokens
        request_validator (optional): Authorization decisions
        clock (callable, optional): Returns the current aware datetime
        sleep (coroutine function, optional): Used for timing normalization
        configure (bool): Whether to configure logging
    """
    if settings is None:
        settings = GaenSettings()
    if configure:
        configure_logging(settings.environment, settings.log_level)

    if data_service is None:
        data_service = InMemoryGaenDataService()
    if fake_key_service is None:
        fake_key_service = RandomFakeKeyService(
            keys_per_day=settings.fake_keys_per_day,
            retention_days=settings.retention_days,
            enabled=settings.fake_keys_enabled,
            clock=clock,
        )
    if signer is None:
        signer = EcdsaBatchSigner()
    if token_service is None:
        token_service = ClaimTokenService(clock=clock)
    if request_validator is None:
        request_validator = JwtRequestValidator(
            retention_days=settings.retention_days,
            auth_required=settings.auth_required,
            clock=clock,
        )

    validation = ValidationUtils(
        retention_days=settings.retention_days,
        bucket_length=settings.bucket_length_ms,
        clock=clock,
    )

    app = FastAPI(
        title="DP-3T GAEN backend",
        description="Upload and publication of exposure notification keys",
    )
    app.state.settings = settings
    app.state.token_service = token_service
    app.state.submission = GaenSubmissionProtocol(
        data_service,
        request_validator,
        token_service,
        validation,
        RequestTimeNormalizer(settings.request_time_ms, sleep=sleep),
        clock=clock,
        issuer=settings.token_issuer,
    )
    app.state.publication = GaenPublicationProtocol(
        data_service,
        fake_key_service,
        signer,
        validation,
        settings.bucket_length_ms,
        clock=clock,
    )

    app.include_router(router)
    app.add_exception_handler(GaenRequestError, handle_gaen_request_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_middleware(RequestLoggingMiddleware)
    return app


if __name__ == "__main__":  # pragma: no cover
    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=8080)
