import pytest

from controllers.generate import Generate
from models.errors import SafetyFilterError
from models.job import ItemResult


class FakeRequest:
    def __init__(self, body):
        self.body = body

    async def json(self):
        return self.body


class FakeGenerationService:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def process_batch(self, items, continue_on_fail=None):
        self.calls.append((items, continue_on_fail))
        if self.error is not None:
            raise self.error
        return [ItemResult(index=i, mode="image", json={"ok": True}) for i, _ in enumerate(items)]


ITEM = {"mode": "image", "current_message": "a cat"}


@pytest.mark.asyncio
@pytest.mark.parametrize("raw,expected", [("false", False), ("true", True), (False, False), (1, True)])
async def test_continue_on_fail_is_coerced_to_bool(raw, expected) -> None:
    service = FakeGenerationService()
    response = await Generate(service).run(FakeRequest({"items": [ITEM], "continue_on_fail": raw}))

    assert response.status == 200
    assert service.calls[0][1] is expected


@pytest.mark.asyncio
async def test_missing_continue_on_fail_uses_configured_default() -> None:
    service = FakeGenerationService()
    await Generate(service).run(FakeRequest({"items": [ITEM]}))
    assert service.calls[0][1] is None


@pytest.mark.asyncio
async def test_non_boolean_continue_on_fail_is_a_bad_request() -> None:
    service = FakeGenerationService()
    response = await Generate(service).run(FakeRequest({"items": [ITEM], "continueOnFail": "sometimes"}))

    assert response.status == 400
    assert service.calls == []


@pytest.mark.asyncio
async def test_aborted_batch_maps_error_type_to_status() -> None:
    service = FakeGenerationService(error=SafetyFilterError(["blocked"]))
    response = await Generate(service).run(FakeRequest([ITEM]))
    assert response.status == 422
