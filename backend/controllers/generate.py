import logging

from blacksheep import Request, Response, json
from blacksheep.exceptions import BadRequestFormat
from blacksheep.server.controllers import APIController, get, post

from models.errors import (
    GenerationError,
    PollTimeoutError,
    SafetyFilterError,
    ToolUnavailableError,
    ValidationError,
    sanitize_error_message,
)
from services.generation_service import GenerationService
from services.request_builder import parse_flag

logger = logging.getLogger("generate_controller")


def _error_status(exc: GenerationError) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, SafetyFilterError):
        return 422
    if isinstance(exc, PollTimeoutError):
        return 504
    if isinstance(exc, ToolUnavailableError):
        return 503
    return 502


class Generate(APIController):
    def __init__(self, generation_service: GenerationService):
        self.generation_service = generation_service

    @get("/health")
    async def health_check(self):
        return json({"status": "ok"})

    @post("/run")
    async def run(self, request: Request) -> Response:
        try:
            body = await request.json()
        except BadRequestFormat as exc:
            return json({"error": f"Invalid JSON body: {sanitize_error_message(str(exc))}"}, status=400)

        if isinstance(body, list):
            items, continue_on_fail = body, None
        elif isinstance(body, dict):
            items = body.get("items")
            if items is None:
                items = [body]
            continue_on_fail = body.get("continue_on_fail", body.get("continueOnFail"))
            if continue_on_fail is not None:
                try:
                    continue_on_fail = parse_flag(continue_on_fail, "continue_on_fail")
                except ValidationError as exc:
                    return json({"error": exc.message, "type": type(exc).__name__}, status=400)
        else:
            return json({"error": "Request body must be an object or a list of items"}, status=400)

        if not items:
            return json({"error": "items is required"}, status=400)

        logger.info(f"POST /api/generate/run with {len(items)} item(s)")
        try:
            results = await self.generation_service.process_batch(items, continue_on_fail=continue_on_fail)
        except GenerationError as exc:
            status = _error_status(exc)
            logger.warning(f"Batch aborted ({status}): {exc.message}")
            return json({"error": exc.message, "type": type(exc).__name__}, status=status)

        return json({"results": [result.to_dict() for result in results]})
