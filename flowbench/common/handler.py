"""Request boundary shared by every JSON route.

A route hands the inbound request and exactly one collaborator call to a
`RequestHandler`. The handler decodes the body, validates it against a
pydantic schema, invokes the collaborator once and maps the outcome onto the
response envelope:

- success: `{"success": true, ...fields returned by the call}` (200/201)
- schema violation: `{"error": "Validation failed", "details": [...]}` (400)
- rejected caller or missing resource: `{"error": <fixed message>}` (401/404)
- anything else: `{"error": <generic message>}` (500), cause logged only

Handlers keep no per-request state on the instance, so one instance serves
concurrent requests.
"""

import inspect
import json
from collections.abc import Awaitable, Callable, Mapping
from time import perf_counter
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pydantic import ValidationError as SchemaValidationError
from starlette.concurrency import run_in_threadpool

from flowbench.common.errors import (
    CollaboratorError,
    DecodeError,
    FlowbenchError,
    RequestRejected,
    UnauthenticatedError,
    UnexpectedError,
    ValidationError,
    Violation,
)
from flowbench.common.logging import handler_name_ctx, logger
from flowbench.common.metrics import collaborator_call_seconds, handler_outcomes_total


Decoder = Callable[[Request], Awaitable[Any]]
CollaboratorCall = Callable[[Any], Any]

USER_ID_HEADER = "x-user-id"


async def decode_json(request: Request) -> Any:
    """Read the raw body and parse it as JSON."""

    return parse_json(await request.body())


def parse_json(raw: bytes) -> Any:
    if not raw.strip():
        raise DecodeError("request body is empty")
    try:
        return json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DecodeError(f"request body is not valid JSON: {exc}") from exc


def user_scoped(decoder: Decoder | None = None, field: str = "userId") -> Decoder:
    """Require the `x-user-id` header set by the session layer and put it in the payload.

    The header wins over a same-named body field. Without a body decoder the
    payload is just `{field: user_id}`.
    """

    async def decode(request: Request) -> Any:
        user_id = request.headers.get(USER_ID_HEADER, "").strip()
        if not user_id:
            raise UnauthenticatedError(f"missing {USER_ID_HEADER} header")
        if decoder is None:
            return {field: user_id}
        payload = await decoder(request)
        if isinstance(payload, dict):
            payload = {**payload, field: user_id}
        return payload

    return decode


def violations_from(exc: SchemaValidationError) -> list[Violation]:
    """Flatten pydantic errors into field-level violations."""

    return [
        Violation(
            path=tuple(error["loc"]),
            message=error["msg"],
            constraint=error["type"],
            value=error.get("input"),
        )
        for error in exc.errors()
    ]


class RequestHandler:
    """Decode → validate → invoke → respond for one endpoint."""

    def __init__(
        self,
        name: str,
        schema: type[BaseModel],
        failure_message: str,
        success_status: int = 200,
        decoder: Decoder = decode_json,
    ) -> None:
        self.name = name
        self.schema = schema
        self.failure_message = failure_message
        self.success_status = success_status
        self.decoder = decoder

    async def handle(self, request: Request, call: CollaboratorCall) -> JSONResponse:
        """Serve one request; `call` receives the validated model and returns response fields."""

        token = handler_name_ctx.set(self.name)
        try:
            try:
                fields = await self._run(request, call)
                return self._respond("success", self.success_status, {"success": True, **fields})
            except ValidationError as exc:
                logger.info(
                    "request rejected: %s",
                    exc,
                    extra={"violations": [violation.to_log() for violation in exc.violations]},
                )
                return self._respond("validation_failure", 400, exc.to_response())
            except RequestRejected as exc:
                logger.info("request refused status=%s: %s", exc.status_code, exc)
                return self._respond("rejected", exc.status_code, exc.to_response())
            except FlowbenchError as exc:
                # Root cause is chained on `exc`; it goes to the log, never the body.
                logger.error("request failed: %s", exc, exc_info=exc)
                return self._respond("fatal", 500, {"error": self.failure_message})
            except Exception as exc:
                # Result fields that cannot be rendered as JSON.
                logger.error("response rendering failed: %s", exc, exc_info=exc)
                return self._respond("fatal", 500, {"error": self.failure_message})
        finally:
            handler_name_ctx.reset(token)

    async def _run(self, request: Request, call: CollaboratorCall) -> Mapping[str, Any]:
        try:
            payload = await self.decoder(request)
            validated = self._validate(payload)
            return await self._invoke(call, validated)
        except FlowbenchError:
            raise
        except Exception as exc:
            raise UnexpectedError(f"{type(exc).__name__}: {exc}") from exc

    def _validate(self, payload: Any) -> BaseModel:
        try:
            return self.schema.model_validate(payload)
        except SchemaValidationError as exc:
            raise ValidationError(violations_from(exc)) from exc

    async def _invoke(self, call: CollaboratorCall, validated: BaseModel) -> Mapping[str, Any]:
        started = perf_counter()
        try:
            if inspect.iscoroutinefunction(call):
                result = await call(validated)
            else:
                result = await run_in_threadpool(call, validated)
        except (CollaboratorError, RequestRejected):
            raise
        except Exception as exc:
            raise UnexpectedError(f"collaborator call raised {type(exc).__name__}: {exc}") from exc
        finally:
            collaborator_call_seconds.labels(handler=self.name).observe(max(0.0, perf_counter() - started))
        if not isinstance(result, Mapping):
            raise UnexpectedError(f"collaborator call returned {type(result).__name__}, expected a mapping")
        return result

    def _respond(self, outcome: str, status_code: int, body: dict[str, Any]) -> JSONResponse:
        # Render first so an unserializable body is never counted as this outcome.
        response = JSONResponse(status_code=status_code, content=body)
        handler_outcomes_total.labels(handler=self.name, outcome=outcome).inc()
        return response
