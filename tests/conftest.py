import io
import json
import threading
from types import SimpleNamespace

import pytest
from PIL import Image

from gem_analysis.models import ImageAsset, Item
from gem_analysis.persistence import Database, ItemRepository, PersistenceGuard, ProgressStore
from gem_analysis.pipeline import ItemAnalyzer
from gem_analysis.vision import (
    CostAccountant,
    ImageDownloader,
    ImagePreprocessor,
    ModelTable,
    VisionClient,
    VisionRequestBuilder,
    load_prompts,
)


def make_jpeg(width=1200, height=900, color=(30, 60, 200), fmt="JPEG", mode="RGB") -> bytes:
    """Synthetic image bytes."""
    image = Image.new(mode, (width, height), color)
    with io.BytesIO() as output:
        image.save(output, format=fmt)
        return output.getvalue()


def make_completion(text, prompt_tokens=6500, completion_tokens=2200, model="gpt-5-mini", finish_reason="stop"):
    """Object shaped like an OpenAI chat completion."""
    return SimpleNamespace(
        model=model,
        usage=SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
        choices=[SimpleNamespace(message=SimpleNamespace(content=text), finish_reason=finish_reason)],
    )


class FakeOpenAIClient:
    """
    Stand-in for ``openai.OpenAI`` exposing ``chat.completions.create``.

    Responses are consumed in order; the last one repeats. Exceptions in the
    list are raised instead of returned.
    """

    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []
        self._lock = threading.Lock()
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    def _create(self, **request):
        with self._lock:
            self.requests.append(request)
            outcome = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


SCENARIO_RESPONSE = {
    "individual_analyses": [
        {
            "image_index": 1,
            "image_classification": "measurement tool",
            "confidence": 0.9,
            "measurements_detected": [
                {
                    "measurement_type": "weight",
                    "value": "2,35",
                    "unit": "ct",
                    "device": "digital scale",
                    "confidence": 0.95,
                }
            ],
        },
        {
            "image_index": 2,
            "image_classification": "gem_macro",
            "confidence": 0.5,
            "visual_observations": "Deep blue stone with even saturation",
            "quality_scores": {
                "focus": 0.9,
                "lighting": 0.8,
                "background": 0.8,
                "color_fidelity": 0.75,
                "visibility": 0.8,
            },
        },
        {
            "image_index": 3,
            "image_classification": "gem_macro",
            "confidence": 0.5,
            "quality_scores": {
                "focus": 0.8,
                "lighting": 0.75,
                "background": 0.75,
                "color_fidelity": 0.7,
                "visibility": 0.8,
            },
        },
    ],
    "primary_image": {"image_index": 2, "reasoning": "Sharpest macro shot on a neutral background"},
}


@pytest.fixture
def scenario_text():
    return json.dumps(SCENARIO_RESPONSE)


@pytest.fixture
def database():
    db = Database("sqlite://")
    db.init_db()
    yield db
    db.close()


@pytest.fixture
def repository(database):
    return ItemRepository(database)


@pytest.fixture
def guard(database):
    return PersistenceGuard(database, threshold=0.7)


@pytest.fixture
def progress_store(tmp_path):
    return ProgressStore(tmp_path / "progress.json")


@pytest.fixture
def model_table():
    return ModelTable.load()


@pytest.fixture
def prompts():
    return load_prompts()


@pytest.fixture
def cost_accountant(model_table):
    return CostAccountant(model_table)


@pytest.fixture
def make_item(tmp_path, repository):
    """Write JPEG files for an item and store it."""

    def _make(item_id="item-1", image_count=3, manual_fields=None, locations=None):
        images = []
        for ordinal in range(image_count):
            if locations is not None:
                location = locations[ordinal]
            else:
                path = tmp_path / f"{item_id}-{ordinal}.jpg"
                path.write_bytes(make_jpeg(color=(20 * ordinal, 80, 160)))
                location = str(path)
            images.append(ImageAsset(id=f"{item_id}-img{ordinal}", location=location, ordinal=ordinal))
        item = Item(id=item_id, images=images, manual_fields=dict(manual_fields or {}))
        repository.add_item(item)
        return repository.get_item(item_id)

    return _make


@pytest.fixture
def build_analyzer(model_table, prompts, cost_accountant, guard, repository):
    """ItemAnalyzer wired to a fake provider client."""

    def _build(responses, model="gpt-5-mini"):
        fake = FakeOpenAIClient(responses)
        analyzer = ItemAnalyzer(
            model=model_table.get(model),
            downloader=ImageDownloader(sleep=lambda _: None),
            preprocessor=ImagePreprocessor(),
            request_builder=VisionRequestBuilder(prompts),
            client=VisionClient(client=fake, sleep=lambda _: None),
            cost_accountant=cost_accountant,
            guard=guard,
            repository=repository,
        )
        return analyzer, fake

    return _build
