"""Tests for the ONNX model manager."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from snaplabel.config import Settings
from snaplabel.ml.model_manager import MODEL_REGISTRY, ModelTask, OnnxModelManager, get_spec

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_settings(**overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "device": "cpu",
        "models_dir": "/tmp/snaplabel_test_models",
        "intra_op_threads": 0,
        "inter_op_threads": 1,
        "gpu_mem_limit": 2_147_483_648,
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


def _write_config(directory: Path, id2label: dict[str, str] | None) -> Path:
    config = directory / "config.json"
    payload: dict[str, object] = {"architectures": ["MobileNetV2ForImageClassification"]}
    if id2label is not None:
        payload["id2label"] = id2label
    config.write_text(json.dumps(payload), encoding="utf-8")
    return config


# ---------------------------------------------------------------------------
# Model registry tests
# ---------------------------------------------------------------------------


class TestModelRegistry:
    def test_known_model_lookup(self) -> None:
        spec = get_spec("mobilenet_v2")
        assert spec.name == "mobilenet_v2"
        assert spec.task == ModelTask.IMAGE_CLASSIFICATION
        assert spec.input_size == 224

    def test_unknown_model_raises_keyerror(self) -> None:
        with pytest.raises(KeyError, match="Unknown model"):
            get_spec("nonexistent_model")

    def test_all_models_take_224_inputs(self) -> None:
        assert {spec.input_size for spec in MODEL_REGISTRY.values()} == {224}

    def test_default_model_is_registered(self) -> None:
        assert Settings().model_name in MODEL_REGISTRY


# ---------------------------------------------------------------------------
# OnnxModelManager tests
# ---------------------------------------------------------------------------


class TestOnnxModelManager:
    @patch("snaplabel.ml.model_manager.hf_hub_download")
    def test_ensure_downloaded_calls_hf_hub_download(self, mock_download: MagicMock) -> None:
        mock_download.return_value = "/tmp/snaplabel_test_models/onnx/model.onnx"
        settings = _make_settings()
        mgr = OnnxModelManager(settings)

        path = mgr.ensure_downloaded("mobilenet_v2")

        mock_download.assert_called_once_with(
            repo_id="Xenova/mobilenet_v2_1.0_224",
            filename="model.onnx",
            subfolder="onnx",
            local_dir="/tmp/snaplabel_test_models",
        )
        assert path == Path("/tmp/snaplabel_test_models/onnx/model.onnx")

    @patch("snaplabel.ml.model_manager.hf_hub_download")
    def test_ensure_downloaded_skips_existing(self, mock_download: MagicMock, tmp_path: Path) -> None:
        model_file = tmp_path / "model.onnx"
        model_file.touch()

        settings = _make_settings(models_dir=str(tmp_path))
        mgr = OnnxModelManager(settings)
        # Simulate a previous download by setting the cached path.
        mgr._model_paths["mobilenet_v2"] = model_file

        path = mgr.ensure_downloaded("mobilenet_v2")

        mock_download.assert_not_called()
        assert path == model_file

    @patch("snaplabel.ml.model_manager.hf_hub_download")
    def test_load_labels_reads_id2label(self, mock_download: MagicMock, tmp_path: Path) -> None:
        mock_download.return_value = str(_write_config(tmp_path, {"1": "tabby, tabby cat", "0": "background"}))
        mgr = OnnxModelManager(_make_settings(models_dir=str(tmp_path)))

        labels = mgr.load_labels("mobilenet_v2")

        assert labels == ["background", "tabby, tabby cat"]
        mock_download.assert_called_once_with(
            repo_id="Xenova/mobilenet_v2_1.0_224",
            filename="config.json",
            local_dir=str(tmp_path),
        )

    @patch("snaplabel.ml.model_manager.hf_hub_download")
    def test_load_labels_without_id2label_raises(self, mock_download: MagicMock, tmp_path: Path) -> None:
        mock_download.return_value = str(_write_config(tmp_path, None))
        mgr = OnnxModelManager(_make_settings(models_dir=str(tmp_path)))

        with pytest.raises(ValueError, match="id2label"):
            mgr.load_labels("mobilenet_v2")

    @patch("snaplabel.ml.model_manager.InferenceSession")
    @patch("snaplabel.ml.model_manager.hf_hub_download")
    def test_get_session_creates_and_caches(self, mock_download: MagicMock, mock_session_cls: MagicMock) -> None:
        mock_download.return_value = "/tmp/snaplabel_test_models/onnx/model.onnx"
        mock_session = MagicMock()
        mock_session_cls.return_value = mock_session

        settings = _make_settings()
        mgr = OnnxModelManager(settings)

        session1 = mgr.get_session("mobilenet_v2")
        session2 = mgr.get_session("mobilenet_v2")

        assert session1 is mock_session
        assert session2 is mock_session
        mock_session_cls.assert_called_once()

    @patch("snaplabel.ml.model_manager.InferenceSession")
    @patch("snaplabel.ml.model_manager.hf_hub_download")
    def test_get_loaded_models(self, mock_download: MagicMock, mock_session_cls: MagicMock) -> None:
        mock_download.return_value = "/tmp/snaplabel_test_models/onnx/model.onnx"
        settings = _make_settings()
        mgr = OnnxModelManager(settings)

        assert mgr.get_loaded_models() == []
        mgr.get_session("resnet_50")
        assert mgr.get_loaded_models() == ["resnet_50"]

    def test_provider_building_cpu(self) -> None:
        settings = _make_settings(device="cpu")
        mgr = OnnxModelManager(settings)
        assert mgr._providers == ["CPUExecutionProvider"]

    def test_provider_building_cuda(self) -> None:
        settings = _make_settings(device="cuda", gpu_mem_limit=1024)
        mgr = OnnxModelManager(settings)
        assert len(mgr._providers) == 2
        provider_name, provider_opts = mgr._providers[0]  # type: ignore[misc]
        assert provider_name == "CUDAExecutionProvider"
        assert provider_opts["device_id"] == 0
        assert provider_opts["gpu_mem_limit"] == 1024
        assert mgr._providers[1] == "CPUExecutionProvider"

    def test_provider_building_openvino(self) -> None:
        settings = _make_settings(device="openvino")
        mgr = OnnxModelManager(settings)
        assert len(mgr._providers) == 2
        provider_name, _provider_opts = mgr._providers[0]  # type: ignore[misc]
        assert provider_name == "OpenVINOExecutionProvider"
        assert mgr._providers[1] == "CPUExecutionProvider"

    @patch("snaplabel.ml.model_manager.InferenceSession")
    @patch("snaplabel.ml.model_manager.hf_hub_download")
    def test_shutdown_clears_sessions(self, mock_download: MagicMock, mock_session_cls: MagicMock) -> None:
        mock_download.return_value = "/tmp/snaplabel_test_models/onnx/model.onnx"
        settings = _make_settings()
        mgr = OnnxModelManager(settings)
        mgr.get_session("mobilenet_v2")
        assert len(mgr.get_loaded_models()) == 1

        mgr.shutdown()
        assert mgr.get_loaded_models() == []

    def test_unknown_model_raises_keyerror(self) -> None:
        settings = _make_settings()
        mgr = OnnxModelManager(settings)
        with pytest.raises(KeyError, match="Unknown model"):
            mgr.ensure_downloaded("totally_fake_model")
