"""Tests for the ONNX model manager."""

from __future__ import annotations

import time
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from mosh.config import Settings
from mosh.ml.face_detector import RetinaFaceDetector
from mosh.ml.model_manager import MODEL_REGISTRY, OnnxModelManager

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_settings(models_dir: Path, **overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "device": "cpu",
        "models_dir": models_dir,
        "model_ttl": 300,
        "intra_op_threads": 0,
        "inter_op_threads": 1,
        "gpu_mem_limit": 2_147_483_648,
        "max_concurrent": 2,
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Model registry tests
# ---------------------------------------------------------------------------


class TestModelRegistry:
    def test_known_model_lookup(self) -> None:
        spec = MODEL_REGISTRY["retinaface_mobilenetv2"]
        assert spec.name == "retinaface_mobilenetv2"
        assert spec.filename == "retinaface_mobilenetv2.onnx"

    def test_unknown_model_raises_keyerror(self) -> None:
        with pytest.raises(KeyError):
            MODEL_REGISTRY["nonexistent_model"]

    def test_default_model_is_registered(self, tmp_path: Path) -> None:
        assert _make_settings(tmp_path).face_detection_model in MODEL_REGISTRY


# ---------------------------------------------------------------------------
# OnnxModelManager tests
# ---------------------------------------------------------------------------


class TestOnnxModelManager:
    @patch("mosh.ml.model_manager.hf_hub_download")
    def test_ensure_downloaded_calls_hf_hub_download(self, mock_download: MagicMock, tmp_path: Path) -> None:
        mock_download.return_value = str(tmp_path / "retinaface_mobilenetv2.onnx")
        mgr = OnnxModelManager(_make_settings(tmp_path))

        path = mgr.ensure_downloaded("retinaface_mobilenetv2")

        mock_download.assert_called_once_with(
            repo_id="danielcopper/recognizex-models",
            filename="retinaface_mobilenetv2.onnx",
            subfolder=None,
            local_dir=str(tmp_path),
        )
        assert path == tmp_path / "retinaface_mobilenetv2.onnx"

    @patch("mosh.ml.model_manager.hf_hub_download")
    def test_ensure_downloaded_skips_existing(self, mock_download: MagicMock, tmp_path: Path) -> None:
        model_file = tmp_path / "retinaface_mobilenetv2.onnx"
        model_file.touch()

        mgr = OnnxModelManager(_make_settings(tmp_path))
        # Simulate a previous download by setting the cached path.
        mgr._model_paths["retinaface_mobilenetv2"] = model_file

        assert mgr.ensure_downloaded("retinaface_mobilenetv2") == model_file
        mock_download.assert_not_called()

    @patch("mosh.ml.model_manager.InferenceSession")
    @patch("mosh.ml.model_manager.hf_hub_download")
    def test_get_session_creates_and_caches(
        self, mock_download: MagicMock, mock_session_cls: MagicMock, tmp_path: Path
    ) -> None:
        mock_download.return_value = str(tmp_path / "retinaface_mobilenetv2.onnx")
        mock_session = MagicMock()
        mock_session_cls.return_value = mock_session

        mgr = OnnxModelManager(_make_settings(tmp_path))

        session1 = mgr.get_session("retinaface_mobilenetv2")
        session2 = mgr.get_session("retinaface_mobilenetv2")

        assert session1 is mock_session
        assert session2 is mock_session
        mock_session_cls.assert_called_once()

    @patch("mosh.ml.model_manager.InferenceSession")
    @patch("mosh.ml.model_manager.hf_hub_download")
    def test_get_loaded_models(self, mock_download: MagicMock, mock_session_cls: MagicMock, tmp_path: Path) -> None:
        mock_download.return_value = str(tmp_path / "retinaface_mobilenetv2.onnx")
        mgr = OnnxModelManager(_make_settings(tmp_path))

        assert mgr.get_loaded_models() == []
        mgr.get_session("retinaface_mobilenetv2")
        assert mgr.get_loaded_models() == ["retinaface_mobilenetv2"]

    @patch("mosh.ml.model_manager.InferenceSession")
    @patch("mosh.ml.model_manager.hf_hub_download")
    def test_unload_idle_models_removes_expired(
        self, mock_download: MagicMock, mock_session_cls: MagicMock, tmp_path: Path
    ) -> None:
        mock_download.return_value = str(tmp_path / "retinaface_mobilenetv2.onnx")
        mgr = OnnxModelManager(_make_settings(tmp_path, model_ttl=1))
        mgr.get_session("retinaface_mobilenetv2")

        # Fake the last_used time to be in the past.
        mgr._sessions["retinaface_mobilenetv2"].last_used = time.monotonic() - 10

        mgr.unload_idle_models()
        assert mgr.get_loaded_models() == []

    def test_unload_idle_skipped_when_ttl_zero(self, tmp_path: Path) -> None:
        mgr = OnnxModelManager(_make_settings(tmp_path, model_ttl=0))
        mgr.unload_idle_models()
        assert mgr.get_loaded_models() == []

    def test_provider_building_cpu(self, tmp_path: Path) -> None:
        mgr = OnnxModelManager(_make_settings(tmp_path, device="cpu"))
        assert mgr._providers == ["CPUExecutionProvider"]

    def test_provider_building_cuda(self, tmp_path: Path) -> None:
        mgr = OnnxModelManager(_make_settings(tmp_path, device="cuda"))
        assert len(mgr._providers) == 2
        provider_name, provider_opts = mgr._providers[0]  # type: ignore[misc]
        assert provider_name == "CUDAExecutionProvider"
        assert provider_opts["device_id"] == 0
        assert mgr._providers[1] == "CPUExecutionProvider"

    @patch("mosh.ml.model_manager.InferenceSession")
    @patch("mosh.ml.model_manager.hf_hub_download")
    def test_shutdown_clears_sessions(
        self, mock_download: MagicMock, mock_session_cls: MagicMock, tmp_path: Path
    ) -> None:
        mock_download.return_value = str(tmp_path / "retinaface_mobilenetv2.onnx")
        mgr = OnnxModelManager(_make_settings(tmp_path))
        mgr.get_session("retinaface_mobilenetv2")
        assert len(mgr.get_loaded_models()) == 1

        mgr.shutdown()
        assert mgr.get_loaded_models() == []

    def test_unknown_model_raises_keyerror(self, tmp_path: Path) -> None:
        mgr = OnnxModelManager(_make_settings(tmp_path))
        with pytest.raises(KeyError, match="Unknown model"):
            mgr.ensure_downloaded("totally_fake_model")


class TestCreateDetector:
    @patch("mosh.ml.model_manager.InferenceSession")
    @patch("mosh.ml.model_manager.hf_hub_download")
    def test_builds_retinaface_on_cached_session(
        self, mock_download: MagicMock, mock_session_cls: MagicMock, tmp_path: Path
    ) -> None:
        mock_download.return_value = str(tmp_path / "retinaface_resnet34.onnx")
        mgr = OnnxModelManager(_make_settings(tmp_path, face_detection_model="retinaface_resnet34"))

        first = mgr.create_detector()
        second = mgr.create_detector()

        assert isinstance(first, RetinaFaceDetector)
        assert first.model_name == "retinaface_resnet34"
        assert first is not second
        mock_session_cls.assert_called_once()

    @patch("mosh.ml.model_manager.hf_hub_download")
    def test_download_failure_propagates(self, mock_download: MagicMock, tmp_path: Path) -> None:
        mock_download.side_effect = OSError("offline")
        mgr = OnnxModelManager(_make_settings(tmp_path))

        with pytest.raises(OSError, match="offline"):
            mgr.create_detector()


class TestDetectorHoldsSession:
    @patch("mosh.ml.model_manager.InferenceSession")
    @patch("mosh.ml.model_manager.hf_hub_download")
    def test_open_detector_keeps_session_loaded(
        self, mock_download: MagicMock, mock_session_cls: MagicMock, tmp_path: Path
    ) -> None:
        mock_download.return_value = str(tmp_path / "retinaface_mobilenetv2.onnx")
        mgr = OnnxModelManager(_make_settings(tmp_path, model_ttl=300))

        streaming = mgr.create_detector()
        mgr._sessions["retinaface_mobilenetv2"].last_used = time.monotonic() - 600
        mgr.unload_idle_models()

        assert mgr.get_loaded_models() == ["retinaface_mobilenetv2"]
        second = mgr.create_detector()
        assert isinstance(streaming, RetinaFaceDetector)
        assert isinstance(second, RetinaFaceDetector)
        assert second._session is streaming._session
        mock_session_cls.assert_called_once()

    @patch("mosh.ml.model_manager.InferenceSession")
    @patch("mosh.ml.model_manager.hf_hub_download")
    def test_session_evicted_once_all_detectors_close(
        self, mock_download: MagicMock, mock_session_cls: MagicMock, tmp_path: Path
    ) -> None:
        mock_download.return_value = str(tmp_path / "retinaface_mobilenetv2.onnx")
        mgr = OnnxModelManager(_make_settings(tmp_path, model_ttl=1))
        first = mgr.create_detector()
        second = mgr.create_detector()

        first.close()
        first.close()
        assert mgr._sessions["retinaface_mobilenetv2"].holders == 1

        second.close()
        mgr._sessions["retinaface_mobilenetv2"].last_used = time.monotonic() - 10
        mgr.unload_idle_models()
        assert mgr.get_loaded_models() == []

    @patch("mosh.ml.model_manager.InferenceSession")
    @patch("mosh.ml.model_manager.hf_hub_download")
    def test_close_after_shutdown_is_ignored(
        self, mock_download: MagicMock, mock_session_cls: MagicMock, tmp_path: Path
    ) -> None:
        mock_download.return_value = str(tmp_path / "retinaface_mobilenetv2.onnx")
        mgr = OnnxModelManager(_make_settings(tmp_path))
        detector = mgr.create_detector()

        mgr.shutdown()
        detector.close()

        assert mgr.get_loaded_models() == []
