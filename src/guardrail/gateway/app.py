"""
HTTP surface of the admission gateway.

Endpoints:
    POST /validate   AdmissionReview in, AdmissionReview out
    GET  /health     Liveness; no policy work
    POST /evaluate   Playground: evaluate one package or all of them
    GET  /packages   Loaded package paths and snapshot generation

/validate answers 200 for every well-formed review; the decision is in
response.allowed. Evaluation runs in a worker thread under a deadline so
the event loop (and /health) stays responsive.

Worker threads come from the event loop's default executor. A thread
cannot be interrupted, so an evaluation that misses its deadline keeps
its thread until the rule engine returns. A burst of such evaluations
can fill the pool; later requests then queue behind them and, once
their own deadline passes, are denied with code 504 like any other
timeout. Requests are never allowed because the pool is busy.
"""

import asyncio
import concurrent.futures
import logging
import signal
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from guardrail import __version__
from guardrail.config import GatewayConfig
from guardrail.errors import (
    EvaluationError,
    EvaluationTimeoutError,
    MalformedRequestError,
    UnsupportedMediaTypeError,
)
from guardrail.gateway.admission import AdmissionController, decode_review
from guardrail.policy.evaluator import evaluate, evaluate_all
from guardrail.policy.loader import PolicyStore, Snapshot
from guardrail.report.json import build_batch_report, build_result_report
from guardrail.schema import AdmissionRequest, AdmissionResponse, AdmissionReview, EvaluationResult

logger = logging.getLogger(__name__)

JSON_MEDIA_TYPE = "application/json"
DISCONNECT_POLL_SECONDS = 0.1

# Status used when the caller went away before a decision was made
CLIENT_CLOSED_REQUEST = 499


class _ClientDisconnected(Exception):
    pass


class PlaygroundRequest(BaseModel):
    """Body of POST /evaluate."""

    input: dict[str, Any] = Field(..., description="Input document")
    package_path: str | None = Field(default=None, description="Package to evaluate; all when omitted")


def create_app(
    store: PolicyStore,
    config: GatewayConfig,
    reload_on_sighup: bool = False,
) -> FastAPI:
    """
    Build the gateway application.

    Args:
        store: Policy store holding the published snapshot
        config: Immutable gateway configuration
        reload_on_sighup: Install a SIGHUP handler that reloads policies
            off the event loop (only when running in the main thread)

    Returns:
        Configured FastAPI application
    """
    controller = AdmissionController(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        loop = asyncio.get_running_loop()
        if reload_on_sighup and hasattr(signal, "SIGHUP"):
            loop.add_signal_handler(signal.SIGHUP, _schedule_reload, loop, store)
            logger.info("Send SIGHUP to reload policies")
        yield
        if reload_on_sighup and hasattr(signal, "SIGHUP"):
            loop.remove_signal_handler(signal.SIGHUP)

    app = FastAPI(title="guardrail", version=__version__, lifespan=lifespan)
    app.state.store = store
    app.state.config = config
    app.state.controller = controller

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/validate")
    async def validate(request: Request) -> Response:
        try:
            _check_media_type(request.headers.get("content-type", ""))
            review = decode_review(await request.body())
        except MalformedRequestError as e:
            logger.warning("Rejected admission request: %s", e.message)
            return _malformed_response(e)

        admission = review.request
        snapshot = store.snapshot
        package = controller.route(admission)

        try:
            result = await _evaluate_with_deadline(
                request, controller, snapshot, admission, config.request_timeout_seconds, package
            )
        except _ClientDisconnected:
            logger.info("Client disconnected, abandoned evaluation of %s", admission.uid)
            return Response(status_code=CLIENT_CLOSED_REQUEST)
        except EvaluationError as e:
            logger.error("Error evaluating request %s (%s): %s", admission.uid, package, e.message)
            response = controller.fail_closed(admission.uid, e)
        else:
            response = controller.decide(admission.uid, result)

        _log_decision(admission, package, response)
        envelope = controller.envelope(review, response)
        return JSONResponse(envelope.to_wire())

    @app.post("/evaluate")
    async def playground(body: PlaygroundRequest) -> dict[str, Any]:
        snapshot = store.snapshot
        if body.package_path is None:
            entries = await asyncio.to_thread(evaluate_all, snapshot, body.input)
            return build_batch_report(entries)

        try:
            result = await asyncio.to_thread(evaluate, snapshot, body.package_path, body.input)
        except EvaluationError as e:
            raise HTTPException(status_code=500, detail=e.to_dict()) from e
        return build_result_report(result)

    @app.get("/packages")
    async def packages() -> dict[str, Any]:
        snapshot = store.snapshot
        return {
            "generation": snapshot.generation,
            "packages": {
                package: [m.source for m in snapshot.modules_for(package)]
                for package in snapshot.packages
            },
        }

    return app


def _schedule_reload(loop: asyncio.AbstractEventLoop, store: PolicyStore) -> asyncio.Future:
    """Reload policies off the event loop; called from the SIGHUP handler."""
    future = loop.run_in_executor(None, store.try_reload)
    future.add_done_callback(_log_reload_failure)
    return future


def _log_reload_failure(future: asyncio.Future | concurrent.futures.Future) -> None:
    # try_reload logs load errors itself; anything else would vanish with the future
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.error("Policy reload crashed: %s", error, exc_info=error)


def _check_media_type(content_type: str) -> None:
    media_type = content_type.split(";", 1)[0].strip().lower()
    if media_type != JSON_MEDIA_TYPE:
        raise UnsupportedMediaTypeError(content_type=content_type)


def _malformed_response(error: MalformedRequestError) -> JSONResponse:
    """
    Best-effort rejection for a request that could not be decoded.

    Without a readable UID the response cannot be correlated; the body
    is still AdmissionReview-shaped so callers can read the reason.
    """
    response = AdmissionResponse.deny(error.uid or "", error.message, code=error.status_code)
    return JSONResponse(AdmissionReview(response=response).to_wire(), status_code=error.status_code)


async def _evaluate_with_deadline(
    request: Request,
    controller: AdmissionController,
    snapshot: Snapshot,
    admission: AdmissionRequest,
    timeout: float,
    package: str,
) -> EvaluationResult:
    """
    Run evaluation in a worker thread, bounded by timeout and the client.

    Raises:
        EvaluationTimeoutError: If the deadline passes first
        _ClientDisconnected: If the caller disconnects first
        EvaluationError: If evaluation itself fails
    """
    work = asyncio.ensure_future(asyncio.to_thread(controller.evaluate_request, snapshot, admission))
    watcher = asyncio.ensure_future(_wait_for_disconnect(request))
    try:
        done, _ = await asyncio.wait(
            {work, watcher},
            timeout=timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )
    finally:
        watcher.cancel()

    if work in done:
        return work.result()

    # The worker thread cannot be interrupted; its result is discarded
    work.cancel()
    if watcher in done:
        raise _ClientDisconnected()
    raise EvaluationTimeoutError(package=package, timeout_seconds=timeout)


async def _wait_for_disconnect(request: Request) -> None:
    while not await request.is_disconnected():
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


def _log_decision(admission: AdmissionRequest, package: str, response: AdmissionResponse) -> None:
    logger.info(
        "uid=%s kind=%s %s/%s operation=%s package=%s allowed=%s",
        admission.uid,
        admission.kind.kind,
        admission.namespace or "-",
        admission.name or "-",
        admission.operation.value,
        package,
        response.allowed,
    )
