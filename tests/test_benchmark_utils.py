import csv
import json

import pytest

from inference_pipeline import ANPRPipeline
from utils.benchmark_utils import Benchmarker


@pytest.fixture
def benchmarker(digit_model):
    return Benchmarker(ANPRPipeline(model=digit_model, max_workers=3))


@pytest.fixture
def report(benchmarker, plate_frame):
    frame, _ = plate_frame
    return benchmarker.run([frame, frame], worker_counts=(1, 2), n_runs=1, warmup_runs=0, verbose=False)


def test_report_per_worker_count(benchmarker, report):
    assert [r.worker_count for r in report.results] == [1, 2]
    for result in report.results:
        assert result.n_frames == 2
        assert result.n_runs == 1
        assert result.latency_avg > 0
        assert result.fps > 0
        assert result.ram_peak > 0
    assert report.n_exemplars == 10
    # worker count is restored after benchmarking
    assert benchmarker.pipeline.max_workers == 3


def test_export_json(benchmarker, report, tmp_path):
    path = benchmarker.export(report, str(tmp_path / "report.json"), format="json")

    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    assert [r["worker_count"] for r in data["results"]] == [1, 2]
    assert data["preprocessing_steps"] == ["denoise", "enhance_contrast"]


def test_export_csv(benchmarker, report, tmp_path):
    path = benchmarker.export(report, str(tmp_path / "report.csv"), format="CSV")

    with open(path, newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))
    assert rows[0][0] == "worker_count"
    assert [row[0] for row in rows[1:]] == ["1", "2"]


def test_export_unknown_format(benchmarker, report, tmp_path):
    with pytest.raises(ValueError):
        benchmarker.export(report, str(tmp_path / "report.xml"), format="xml")


def test_invalid_arguments(benchmarker, plate_frame):
    with pytest.raises(ValueError):
        benchmarker.run([plate_frame[0]], n_runs=0)
    with pytest.raises(ValueError):
        benchmarker.benchmark_workers([], worker_count=1)
