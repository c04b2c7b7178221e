import json
import os

import cv2
import numpy as np
import pytest
import yaml

from anpr_errors import InvalidFrame
from anpr_types import Frame, PipelineStage, RecognitionStatus
from conftest import PLATE_TEXT, compose_frame, compose_plate
from glyph_classifier import save_model
from inference_pipeline import ANPRPipeline, load_config, main


BUNDLED_CONFIG = os.path.join(os.path.dirname(__file__), os.pardir, "pipeline_config.yaml")


@pytest.fixture
def pipeline(digit_model):
    return ANPRPipeline(model=digit_model)


@pytest.fixture
def model_file(tmp_path, digit_model):
    return save_model(digit_model, str(tmp_path / "glyphs.npz"))


def plate_image(text):
    return compose_frame(compose_plate(text))


class TestRunSingle:
    def test_reads_three_digit_plate(self, pipeline, plate_frame):
        frame, box = plate_frame

        result = pipeline.run_single(frame)

        assert result.status == RecognitionStatus.SUCCESS
        assert result.stage == PipelineStage.DONE
        assert result.text == PLATE_TEXT
        assert [p.label for p in result.predictions] == list(PLATE_TEXT)
        assert all(p.distance == pytest.approx(0.0, abs=1e-9) for p in result.predictions)
        for got, want in zip(result.roi.as_tuple(), box):
            assert abs(got - want) <= 3
        assert result.latency_ms > 0

    def test_no_plate(self, pipeline, make_frame):
        result = pipeline.run_single(make_frame())

        assert result.status == RecognitionStatus.NO_PLATE
        assert result.stage == PipelineStage.LOCALIZING
        assert result.text is None
        assert not result.plate_found

    def test_plate_without_glyphs(self, pipeline, make_frame):
        blank = np.full((85, 240), 255, dtype=np.uint8)

        result = pipeline.run_single(make_frame(blank))

        assert result.status == RecognitionStatus.NO_GLYPHS
        assert result.stage == PipelineStage.SEGMENTING
        assert result.text == ""
        assert result.plate_found

    @pytest.mark.parametrize("bad", [
        None,
        42,
        np.zeros((0, 0), dtype=np.uint8),
        np.zeros((4, 4, 2), dtype=np.uint8),
        b"not an image",
    ])
    def test_invalid_frame_raises(self, pipeline, bad):
        with pytest.raises(InvalidFrame):
            pipeline.run_single(bad)

    def test_input_frame_untouched(self, pipeline, plate_frame):
        frame, _ = plate_frame
        original = frame.copy()

        pipeline.run_single(Frame(data=frame, source="camera-1"))

        np.testing.assert_array_equal(frame, original)

    def test_encoded_bytes(self, pipeline, plate_frame):
        frame, _ = plate_frame
        ok, encoded = cv2.imencode(".png", frame)
        assert ok

        assert pipeline.run_single(encoded.tobytes()).text == PLATE_TEXT

    def test_image_path(self, pipeline, plate_frame, tmp_path):
        frame, _ = plate_frame
        path = str(tmp_path / "car.png")
        cv2.imwrite(path, frame)

        assert pipeline.read_plate(path) == PLATE_TEXT

    def test_five_digit_plate(self, pipeline):
        assert pipeline.read_plate(plate_image("90417")) == "90417"

    def test_to_dict_is_json_serializable(self, pipeline, plate_frame):
        frame, _ = plate_frame
        data = json.loads(json.dumps(pipeline.run_single(frame).to_dict()))

        assert data["status"] == "success"
        assert data["stage"] == "done"
        assert len(data["roi"]) == 4


class TestBatch:
    def test_order_and_isolation(self, pipeline, tmp_path):
        items = [
            plate_image("731"),
            np.zeros((0, 0), dtype=np.uint8),
            compose_frame(),
            str(tmp_path / "missing.png"),
            plate_image("2846"),
        ]

        results = pipeline.run_batch(items)

        assert [r.status for r in results] == [
            RecognitionStatus.SUCCESS,
            RecognitionStatus.INVALID_FRAME,
            RecognitionStatus.NO_PLATE,
            RecognitionStatus.INVALID_FRAME,
            RecognitionStatus.SUCCESS,
        ]
        assert results[0].text == "731"
        assert results[4].text == "2846"
        assert results[1].text is None
        assert results[1].error

    def test_unsupported_items_do_not_sink_the_batch(self, pipeline, plate_frame):
        frame, _ = plate_frame

        results = pipeline.run_batch([frame, None, 42, frame])

        assert [r.status for r in results] == [
            RecognitionStatus.SUCCESS,
            RecognitionStatus.INVALID_FRAME,
            RecognitionStatus.INVALID_FRAME,
            RecognitionStatus.SUCCESS,
        ]
        assert results[0].text == results[3].text == PLATE_TEXT
        assert "NoneType" in results[1].error

    def test_concurrent_batch_matches_sequential(self, digit_model):
        texts = ["731", "904", "581", "2846", "172", "3690", "425", "086"]
        images = [plate_image(text) for text in texts]

        parallel = ANPRPipeline(model=digit_model, max_workers=4).run_batch(images)
        sequential = ANPRPipeline(model=digit_model, max_workers=1).run_batch(images)

        assert [r.text for r in parallel] == texts
        assert [r.text for r in sequential] == texts

    def test_empty_batch(self, pipeline):
        assert pipeline.run_batch([]) == []

    def test_run_inference_dispatch(self, pipeline, plate_frame):
        frame, _ = plate_frame

        single = pipeline.run_inference(frame)
        batch = pipeline.run_inference([frame, frame])

        assert single.text == PLATE_TEXT
        assert [r.text for r in batch] == [PLATE_TEXT, PLATE_TEXT]


class TestModel:
    def test_no_model_available(self, plate_frame):
        pipeline = ANPRPipeline()
        with pytest.raises(FileNotFoundError):
            pipeline.run_single(plate_frame[0])

    def test_missing_model_file(self, tmp_path):
        pipeline = ANPRPipeline(model_path=str(tmp_path / "nope.npz"))
        with pytest.raises(FileNotFoundError):
            pipeline.load_model()

    def test_lazy_load_from_path(self, model_file, plate_frame):
        pipeline = ANPRPipeline(model_path=model_file)
        assert pipeline.model is None

        assert pipeline.read_plate(plate_frame[0]) == PLATE_TEXT
        assert pipeline.model is not None

    def test_train_and_save(self, tmp_path, digit_samples, plate_frame):
        pipeline = ANPRPipeline()
        pipeline.train_model(digit_samples, k=3)

        path = pipeline.save_model(str(tmp_path / "trained"))

        assert path.endswith(".npz")
        assert ANPRPipeline(model_path=path).read_plate(plate_frame[0]) == PLATE_TEXT

    def test_save_without_model(self):
        with pytest.raises(ValueError):
            ANPRPipeline().save_model("model.npz")

    def test_invalid_worker_count(self):
        with pytest.raises(ValueError):
            ANPRPipeline(max_workers=0)


class TestPostprocess:
    def test_normalizes_by_default(self, pipeline):
        assert pipeline.postprocess("ab-12 3") == "AB123"

    def test_normalization_can_be_disabled(self, digit_model):
        pipeline = ANPRPipeline(model=digit_model, postprocessing_config={"normalize": False})
        assert pipeline.postprocess("ab-12") == "ab-12"


class TestConfig:
    def write_config(self, tmp_path, config):
        path = tmp_path / "pipeline_config.yaml"
        path.write_text(yaml.safe_dump(config), encoding="utf-8")
        return str(path)

    def test_from_config_resolves_relative_model_path(self, tmp_path, model_file, plate_frame):
        config_path = self.write_config(tmp_path, {
            "model": {"path": "glyphs.npz"},
            "localization": {"selection": "largest"},
            "inference": {"max_workers": 2},
        })

        pipeline = ANPRPipeline.from_config(config_path)

        assert pipeline.model_path == model_file
        assert pipeline.max_workers == 2
        assert pipeline.localizer.selection == "largest"
        assert pipeline.read_plate(plate_frame[0]) == PLATE_TEXT

    def test_empty_config_uses_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")

        pipeline = ANPRPipeline.from_config(str(path))

        assert pipeline.model_path is None
        assert pipeline.max_workers == 4
        assert pipeline.preprocessor.get_enabled_steps() == ["denoise", "enhance_contrast"]

    def test_bundled_config_loads(self):
        config = load_config(BUNDLED_CONFIG)
        assert set(config) >= {"model", "preprocessing", "localization", "segmentation"}

    def test_missing_config(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "nope.yaml"))

    def test_config_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ValueError):
            load_config(str(path))


class TestCLI:
    def test_train_then_recognize(self, tmp_path, capsys, plate_frame):
        model_path = str(tmp_path / "cli_model.npz")
        assert main(["train", "--synthetic", "--output", model_path]) == 0

        config_path = tmp_path / "config.yaml"
        config_path.write_text(
            yaml.safe_dump({"model": {"path": "cli_model.npz"}, "logging": {"level": "WARNING"}}),
            encoding="utf-8"
        )
        image_path = str(tmp_path / "car.png")
        cv2.imwrite(image_path, plate_frame[0])
        capsys.readouterr()

        assert main(["recognize", "--config", str(config_path), image_path]) == 0

        lines = [line for line in capsys.readouterr().out.splitlines() if line.strip()]
        assert len(lines) == 1
        record = json.loads(lines[0])
        assert record["image"] == image_path
        assert record["status"] == "success"
        assert record["text"] == PLATE_TEXT

    def test_benchmark_command(self, tmp_path, model_file, plate_frame):
        config_path = tmp_path / "config.yaml"
        config_path.write_text(yaml.safe_dump({"model": {"path": "glyphs.npz"}}), encoding="utf-8")
        image_path = str(tmp_path / "car.png")
        cv2.imwrite(image_path, plate_frame[0])
        report_path = tmp_path / "report.json"

        exit_code = main([
            "benchmark", "--config", str(config_path),
            "--workers", "1", "2", "--runs", "1", "--warmup", "0",
            "--output", str(report_path), "--format", "json",
            image_path,
        ])

        assert exit_code == 0
        report = json.loads(report_path.read_text(encoding="utf-8"))
        assert [r["worker_count"] for r in report["results"]] == [1, 2]

    def test_train_requires_a_source(self, tmp_path):
        with pytest.raises(SystemExit):
            main(["train", "--output", str(tmp_path / "m.npz")])
