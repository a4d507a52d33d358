"""Tests for the Replicate and OpenAI clients."""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import pytest

from lorastudio.clients.prompt_enhancer import SYSTEM_INSTRUCTION, PromptEnhancer
from lorastudio.clients.replicate import ReplicateClient, _parse_progress
from lorastudio.config import Settings
from lorastudio.errors import SynthesisJobFailed, TrainingServiceError

BASE_URL = "https://replicate.test/v1"


@pytest.fixture
def settings():
    return Settings(
        replicate_api_url=BASE_URL,
        replicate_api_token="r8_test",
        replicate_trainer_version="ostris/flux-dev-lora-trainer:abc123",
        replicate_training_destination="studio/user-models",
        openai_api_key="sk-test",
    )


def make_client(settings, handler) -> ReplicateClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE_URL)
    return ReplicateClient(settings=settings, http_client=http_client)


def test_parse_progress():
    assert _parse_progress(None) is None
    assert _parse_progress("loading model") is None
    assert _parse_progress("step 10%\nstep 42.5%\n") == 42.5


@pytest.mark.asyncio
async def test_submit_training(settings):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"id": "trn_42", "status": "starting"})

    client = make_client(settings, handler)
    training_id = await client.submit_training(
        ["https://uploads.example.com/1.jpg"], "sks person", {"resolution": 512}
    )

    assert training_id == "trn_42"
    assert seen["path"] == "/v1/models/ostris/flux-dev-lora-trainer/versions/abc123/trainings"
    assert seen["body"] == {
        "destination": "studio/user-models",
        "input": {
            "input_images": ["https://uploads.example.com/1.jpg"],
            "trigger_word": "sks person",
            "resolution": 512,
        },
    }


@pytest.mark.asyncio
async def test_submit_training_http_error(settings):
    client = make_client(settings, lambda request: httpx.Response(500, json={"detail": "boom"}))

    with pytest.raises(TrainingServiceError):
        await client.submit_training([], "sks", {})


@pytest.mark.asyncio
async def test_get_training_reads_version_and_progress(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/trainings/trn_42"
        return httpx.Response(
            200,
            json={
                "id": "trn_42",
                "status": "succeeded",
                "logs": "flux_train 50%\nflux_train 100%",
                "output": {"version": "studio/user-models:v9"},
            },
        )

    snapshot = await make_client(settings, handler).get_training("trn_42")

    assert snapshot.status == "succeeded"
    assert snapshot.version == "studio/user-models:v9"
    assert snapshot.progress == 100.0


@pytest.mark.asyncio
async def test_wait_prediction_polls_until_done(settings):
    statuses = iter(["starting", "processing", "succeeded"])

    def handler(request: httpx.Request) -> httpx.Response:
        status = next(statuses)
        body = {"id": "pred_1", "status": status}
        if status == "succeeded":
            body["output"] = ["https://cdn.example.com/1.png", "https://cdn.example.com/2.png"]
        return httpx.Response(200, json=body)

    result = await make_client(settings, handler).wait_prediction(
        "pred_1", timeout=5, poll_interval=0
    )

    assert result.outputs == ["https://cdn.example.com/1.png", "https://cdn.example.com/2.png"]


@pytest.mark.asyncio
async def test_single_output_is_wrapped(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, json={"id": "pred_1", "status": "succeeded", "output": "https://cdn.example.com/1.png"}
        )

    result = await make_client(settings, handler).get_prediction("pred_1")
    assert result.outputs == ["https://cdn.example.com/1.png"]


@pytest.mark.asyncio
async def test_wait_prediction_times_out(settings):
    client = make_client(
        settings, lambda request: httpx.Response(200, json={"id": "pred_1", "status": "processing"})
    )

    with pytest.raises(SynthesisJobFailed) as exc_info:
        await client.wait_prediction("pred_1", timeout=0.05, poll_interval=0.01)
    assert exc_info.value.retriable is True


@pytest.mark.asyncio
async def test_failed_prediction_raises(settings):
    client = make_client(
        settings,
        lambda request: httpx.Response(
            200, json={"id": "pred_1", "status": "failed", "error": "NSFW content detected"}
        ),
    )

    with pytest.raises(SynthesisJobFailed, match="NSFW"):
        await client.wait_prediction("pred_1", timeout=5, poll_interval=0)


def completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


@pytest.mark.asyncio
async def test_enhance_prompt(settings):
    openai_client = SimpleNamespace(
        chat=SimpleNamespace(
            completions=SimpleNamespace(
                create=AsyncMock(return_value=completion('"A portrait at golden hour"'))
            )
        )
    )
    enhancer = PromptEnhancer(settings=settings, client=openai_client)

    assert await enhancer.enhance("a portrait") == "A portrait at golden hour"

    kwargs = openai_client.chat.completions.create.await_args.kwargs
    assert kwargs["model"] == "gpt-4o"
    assert kwargs["max_tokens"] == 200
    assert kwargs["messages"][0] == {"role": "system", "content": SYSTEM_INSTRUCTION}


@pytest.mark.asyncio
async def test_enhance_empty_response(settings):
    openai_client = SimpleNamespace(
        chat=SimpleNamespace(
            completions=SimpleNamespace(create=AsyncMock(return_value=completion("  ")))
        )
    )

    with pytest.raises(ValueError):
        await PromptEnhancer(settings=settings, client=openai_client).enhance("a portrait")
