# backend/tests/unit/test_trainer_service.py
import json

import pytest

from chatflow.services.trainer_service import SEED_TRAINING_DATA, TrainerService


@pytest.fixture
def trainer(matcher, gateway):
    return TrainerService(matcher, gateway)


@pytest.mark.asyncio
async def test_seed_loads_the_whole_corpus(trainer, matcher):
    added = await trainer.seed_initial_training()

    assert added == len(SEED_TRAINING_DATA)
    assert matcher.corpus_size == len(SEED_TRAINING_DATA)


@pytest.mark.asyncio
async def test_seeding_twice_adds_nothing(trainer, matcher):
    await trainer.seed_initial_training()

    assert await trainer.seed_initial_training() == 0
    assert matcher.corpus_size == len(SEED_TRAINING_DATA)


@pytest.mark.asyncio
async def test_export_then_import_into_fresh_engine(trainer, matcher):
    await matcher.learn("oi", "Olá!", approved=True)
    await matcher.learn("qual o horario", "Das 9h às 18h.", approved=False)

    approved_only = json.loads(await trainer.export_training_data())
    everything = json.loads(await trainer.export_training_data(include_unapproved=True))

    assert [item["input"] for item in approved_only] == ["oi"]
    assert len(everything) == 2
    assert approved_only[0] == {
        "input": "oi", "output": "Olá!", "confidence": 1.0, "usage_count": 0, "approved": True,
    }


@pytest.mark.asyncio
async def test_import_skips_malformed_and_duplicate_items(trainer, matcher):
    payload = json.dumps([
        {"input": "oi", "output": "Olá!", "approved": True},
        {"input": "Oi!", "output": "Outra saudação", "approved": True},
        {"input": "sem resposta"},
        "texto solto",
        {"input": "tem estacionamento", "output": "Sim, gratuito."},
    ])

    imported = await trainer.import_training_data(payload)

    assert imported == 2
    # Imported pairs without an explicit approval wait for review.
    assert matcher.corpus_size == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", ["{not json", json.dumps({"input": "oi", "output": "Olá!"})])
async def test_import_rejects_invalid_payloads(trainer, matcher, payload):
    assert await trainer.import_training_data(payload) == 0
    assert matcher.corpus_size == 0
