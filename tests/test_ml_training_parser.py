from __future__ import annotations

import allure
import pytest

from gidterm.semantic.parsers.ml_training import (
    GPU_OOM_ERROR,
    NAN_LOSS_ERROR,
    MLTrainingParser,
)

pytestmark = [
    allure.epic("Output Intelligence"),
    allure.feature("ML Training Parser"),
]

PYTORCH_LOG = """\
Epoch 44/100
Training loss: 0.312 accuracy: 0.801
Epoch 45/100
Training loss: 0.245 accuracy: 0.865 lr: 0.001
"""


def test_pytorch_style_log() -> None:
    parsed = MLTrainingParser().parse(PYTORCH_LOG)

    assert parsed.progress == pytest.approx(0.45)
    assert parsed.metrics["epoch"].as_int() == 45
    assert parsed.metrics["total_epochs"].as_int() == 100
    assert parsed.metrics["loss"].as_float() == pytest.approx(0.245)
    assert parsed.metrics["accuracy"].as_float() == pytest.approx(0.865)
    assert parsed.metrics["learning_rate"].as_float() == pytest.approx(0.001)
    assert parsed.phase == "Training"
    assert parsed.errors == ()


def test_abbreviated_valid_metrics_stay_in_training_phase() -> None:
    text = "Epoch 45/100\nValid Loss: 0.245\nValid Acc: 0.865\nLearning Rate: 0.001"

    parsed = MLTrainingParser().parse(text)

    assert parsed.phase == "Training"
    assert parsed.progress == pytest.approx(0.45)
    assert parsed.metrics["loss"].as_float() == pytest.approx(0.245)
    assert parsed.metrics["accuracy"].as_float() == pytest.approx(0.865)
    assert parsed.metrics["learning_rate"].as_float() == pytest.approx(0.001)


def test_keras_style_log() -> None:
    text = "Epoch 2/10\n100/100 [==============================] - loss: 1.2e-03 - acc: 0.91"

    parsed = MLTrainingParser().parse(text)

    assert parsed.progress == pytest.approx(0.2)
    assert parsed.metrics["loss"].as_float() == pytest.approx(0.0012)
    assert parsed.metrics["accuracy"].as_float() == pytest.approx(0.91)


def test_validation_phase_wins_over_training() -> None:
    text = "Epoch 3/5\nTraining loss: 0.5\nValidating...\nval_loss: 0.6"

    assert MLTrainingParser().parse(text).phase == "Validation"


def test_testing_phase() -> None:
    assert MLTrainingParser().parse("Running test set\nloss: 0.1").phase == "Testing"


def test_nan_loss_is_reported() -> None:
    parsed = MLTrainingParser().parse("Epoch 7/10\nloss: nan")

    assert parsed.errors == (NAN_LOSS_ERROR,)
    assert "loss" not in parsed.metrics


def test_words_containing_nan_are_not_errors() -> None:
    parsed = MLTrainingParser().parse("Epoch 1/2 on nano-dataset, financial split")

    assert parsed.errors == ()


def test_cuda_oom_and_explicit_errors() -> None:
    text = "Epoch 1/3\nRuntimeError: CUDA out of memory. Tried to allocate 2.00 GiB"

    parsed = MLTrainingParser().parse(text)

    assert parsed.errors == (
        GPU_OOM_ERROR,
        "RuntimeError: CUDA out of memory. Tried to allocate 2.00 GiB",
    )


def test_zero_total_epochs_keeps_zero_progress() -> None:
    parsed = MLTrainingParser().parse("epoch 0/0")

    assert parsed.progress == 0.0
    assert parsed.metrics["total_epochs"].as_int() == 0


def test_can_parse() -> None:
    parser = MLTrainingParser()

    assert parser.can_parse("Epoch 1/10")
    assert parser.can_parse("loss: 0.3")
    assert parser.can_parse("starting epoch")
    assert not parser.can_parse("Compiling crate foo v0.1.0")


def test_identity() -> None:
    parser = MLTrainingParser()

    assert parser.name == "ml_training"
    assert "ml_training" in parser.supported_types()
    assert "deep_learning" in parser.supported_types()
