"""
Tests for request building, the provider client and cost accounting.
"""

import httpx
import pytest
from openai import APIConnectionError, AuthenticationError, RateLimitError

from conftest import FakeOpenAIClient, make_completion, make_jpeg
from gem_analysis.errors import ConfigurationError, UnknownModelError, VisionProviderError
from gem_analysis.models import ImageAsset
from gem_analysis.vision import (
    CostAccountant,
    ImagePreprocessor,
    ModelTable,
    VisionClient,
    VisionRequestBuilder,
)
from gem_analysis.vision.vision_client import extract_usage


def _images(count=3):
    preprocessor = ImagePreprocessor()
    return [
        preprocessor.preprocess_asset(
            ImageAsset(id=f"img-{i}", location=f"{i}.jpg", ordinal=i),
            make_jpeg(800, 600, color=(10 * i, 20, 30)),
        )
        for i in range(count)
    ]


def _status_error(cls, status):
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    response = httpx.Response(status, request=request)
    return cls("error", response=response, body=None)


class TestVisionRequestBuilder:
    """Test suite for VisionRequestBuilder."""

    def test_request_structure(self, prompts, model_table):
        images = _images(3)
        request = VisionRequestBuilder(prompts).build(images, model_table.get("gpt-5-mini"))

        assert request["model"] == "gpt-5-mini"
        assert request["response_format"] == {"type": "json_object"}
        assert request["max_completion_tokens"] == 8000
        assert request["reasoning_effort"] == "low"

        system, user = request["messages"]
        assert system["role"] == "system"
        text_part, *image_parts = user["content"]
        assert "3 images" in text_part["text"]
        assert len(image_parts) == 3
        assert all(p["image_url"]["url"].startswith("data:image/jpeg;base64,") for p in image_parts)

    def test_reasoning_effort_only_when_configured(self, prompts, model_table):
        request = VisionRequestBuilder(prompts).build(_images(1), model_table.get("gpt-4o"))
        assert "reasoning_effort" not in request
        assert request["max_completion_tokens"] == 4000

    def test_identical_inputs_identical_body(self, prompts, model_table):
        images = _images(2)
        builder = VisionRequestBuilder(prompts)
        model = model_table.get("gpt-5-mini")
        assert builder.build(images, model) == builder.build(list(images), model)

    def test_no_images_rejected(self, prompts, model_table):
        with pytest.raises(ValueError):
            VisionRequestBuilder(prompts).build([], model_table.get("gpt-5-mini"))


class TestVisionClient:
    """Test suite for VisionClient retries."""

    def test_retries_transient_then_succeeds(self):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        fake = FakeOpenAIClient([
            APIConnectionError(request=request),
            _status_error(RateLimitError, 429),
            make_completion("{}", 100, 20),
        ])
        delays = []
        client = VisionClient(client=fake, sleep=delays.append)

        response = client.complete({"model": "gpt-5-mini", "messages": []})

        assert response.input_tokens == 100
        assert response.output_tokens == 20
        assert len(fake.requests) == 3
        assert delays == [1.0, 2.0]

    def test_permanent_error_not_retried(self):
        fake = FakeOpenAIClient([_status_error(AuthenticationError, 401)])
        client = VisionClient(client=fake, sleep=lambda _: None)

        with pytest.raises(VisionProviderError) as exc_info:
            client.complete({"model": "gpt-5-mini"})

        assert len(fake.requests) == 1
        assert exc_info.value.transient is False
        assert exc_info.value.error_code == "HTTP_401"

    def test_exhausted_retries(self):
        fake = FakeOpenAIClient([ConnectionError("connection reset by peer")])
        client = VisionClient(client=fake, max_attempts=3, sleep=lambda _: None)

        with pytest.raises(VisionProviderError) as exc_info:
            client.complete({"model": "gpt-5-mini"})

        assert len(fake.requests) == 3
        assert exc_info.value.transient is True

    def test_missing_usage_rejected(self):
        with pytest.raises(VisionProviderError):
            extract_usage({"choices": []})

    def test_usage_from_dict(self):
        assert extract_usage({"usage": {"prompt_tokens": 5, "completion_tokens": 7}}) == (5, 7)


class TestCostAccountant:
    """Test suite for CostAccountant."""

    def test_cost_reconciliation(self, cost_accountant):
        cost = cost_accountant.compute_cost("gpt-5-mini", 6500, 2200)
        assert cost == pytest.approx(6.5 * 0.0015 + 2.2 * 0.006)
        assert cost == pytest.approx(0.02295)

    def test_unknown_model_fails_closed(self, cost_accountant):
        with pytest.raises(UnknownModelError) as exc_info:
            cost_accountant.compute_cost("gpt-unknown", 100, 100)
        assert "gpt-5-mini" in exc_info.value.available

    def test_daily_budget(self, model_table):
        accountant = CostAccountant(model_table, daily_budget=0.04)
        accountant.record("gpt-5-mini", 6500, 2200)
        assert not accountant.is_over_budget()
        accountant.record("gpt-5-mini", 6500, 2200)
        assert accountant.is_over_budget()
        assert accountant.today_spend() == pytest.approx(0.0459)

    def test_report_by_model(self, model_table):
        accountant = CostAccountant(model_table, daily_budget=0.05)
        cost = accountant.record("gpt-5-mini", 6500, 2200)

        report = accountant.report()

        assert cost == pytest.approx(0.02295)
        assert report["remaining_usd"] == pytest.approx(0.02705)
        assert report["by_model"]["gpt-5-mini"] == {
            "requests": 1,
            "input_tokens": 6500,
            "output_tokens": 2200,
            "cost_usd": pytest.approx(0.02295),
        }

    def test_unknown_model_not_recorded(self, cost_accountant):
        with pytest.raises(UnknownModelError):
            cost_accountant.record("gpt-unknown", 10, 10)
        assert cost_accountant.report()["by_model"] == {}

    def test_invalid_price_table(self):
        with pytest.raises(ConfigurationError):
            ModelTable.from_dict({"broken": {"input_per_1k": 0.1}})

    def test_missing_price_table(self, tmp_path):
        with pytest.raises(ConfigurationError):
            ModelTable.load(tmp_path / "missing.yaml")
