"""
Benchmark Utilities for the ANPR pipeline

Đo hiệu năng nhận dạng batch theo số thread trong pool:
latency, throughput (frames/s) và RSS peak.
"""

import gc
import time
import json
import csv
import logging
import numpy as np
from typing import Any, Dict, List, Sequence
from dataclasses import dataclass, field, asdict
from datetime import datetime

import psutil

from utils.image_utils import to_frame


logger = logging.getLogger(__name__)


@dataclass
class BenchmarkResult:
    """Kết quả benchmark cho một số worker."""
    worker_count: int
    n_runs: int
    n_frames: int
    latency_avg: float = 0.0
    latency_std: float = 0.0
    fps: float = 0.0
    ram_peak: float = 0.0


@dataclass
class BenchmarkReport:
    """Báo cáo benchmark tổng hợp."""
    model_path: str
    n_exemplars: int
    preprocessing_steps: List[str]
    timestamp: str = ""
    results: List[BenchmarkResult] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "model_path": self.model_path,
            "n_exemplars": self.n_exemplars,
            "preprocessing_steps": self.preprocessing_steps,
            "timestamp": self.timestamp,
            "results": [asdict(r) for r in self.results]
        }


class Benchmarker:
    """
    Công cụ benchmark cho ANPRPipeline.run_batch().

    Example:
        from utils.benchmark_utils import Benchmarker

        benchmarker = Benchmarker(pipeline)
        report = benchmarker.run(images, worker_counts=[1, 2, 4])
        benchmarker.export(report, "benchmark.csv")
    """

    def __init__(self, pipeline):
        """
        Args:
            pipeline: ANPRPipeline instance
        """
        self.pipeline = pipeline

    @staticmethod
    def get_memory_mb() -> float:
        """RSS hiện tại của process (MB)."""
        return psutil.Process().memory_info().rss / (1024 * 1024)

    def benchmark_workers(
        self,
        frames: Sequence[Any],
        worker_count: int,
        n_runs: int = 10,
        warmup_runs: int = 2
    ) -> BenchmarkResult:
        """Benchmark run_batch() với số thread cho trước."""
        if not frames:
            raise ValueError("Need at least one frame to benchmark")

        # Load model trước, ngoài phần đo thời gian
        self.pipeline.ensure_model()

        gc.collect()

        old_workers = self.pipeline.max_workers
        self.pipeline.max_workers = worker_count
        try:
            for _ in range(warmup_runs):
                self.pipeline.run_batch(frames)

            gc.collect()

            latencies = []
            ram_samples = [self.get_memory_mb()]

            for _ in range(n_runs):
                start = time.perf_counter()
                self.pipeline.run_batch(frames)
                latencies.append((time.perf_counter() - start) * 1000)
                ram_samples.append(self.get_memory_mb())
        finally:
            self.pipeline.max_workers = old_workers

        latencies = np.array(latencies)
        avg_latency = float(np.mean(latencies))

        return BenchmarkResult(
            worker_count=worker_count,
            n_runs=n_runs,
            n_frames=len(frames),
            latency_avg=avg_latency,
            latency_std=float(np.std(latencies)),
            fps=len(frames) * 1000.0 / avg_latency if avg_latency > 0 else 0.0,
            ram_peak=max(ram_samples)
        )

    def run(
        self,
        images: Sequence[Any],
        worker_counts: Sequence[int] = (1, 2, 4),
        n_runs: int = 10,
        warmup_runs: int = 2,
        verbose: bool = True
    ) -> BenchmarkReport:
        """
        Benchmark nhiều số worker.

        Ảnh được decode một lần từ đầu, chỉ phần nhận dạng được đo thời gian.

        Args:
            images: Đường dẫn, bytes, array hoặc Frame
            worker_counts: Các số thread cần so sánh
            n_runs: Số lần chạy có đo cho mỗi số worker
            warmup_runs: Số lần chạy warmup (không đo)
            verbose: Log bảng kết quả

        Returns:
            BenchmarkReport
        """
        if n_runs < 1:
            raise ValueError(f"n_runs must be >= 1, got: {n_runs}")

        frames = [to_frame(image) for image in images]
        self.pipeline.ensure_model()
        model = self.pipeline.model

        report = BenchmarkReport(
            model_path=str(self.pipeline.model_path),
            n_exemplars=model.n_samples,
            preprocessing_steps=self.pipeline.preprocessor.get_enabled_steps(),
            timestamp=datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        )

        if verbose:
            logger.info("=" * 70)
            logger.info("BENCHMARK: Worker Count Comparison (%d frames)", len(frames))
            logger.info("%-10s %-20s %-15s %-15s", "Workers", "Latency (ms)", "FPS", "RAM Peak (MB)")
            logger.info("-" * 70)

        for worker_count in worker_counts:
            gc.collect()
            result = self.benchmark_workers(frames, worker_count, n_runs, warmup_runs)
            report.results.append(result)

            if verbose:
                latency_str = f"{result.latency_avg:.2f} ± {result.latency_std:.2f}"
                logger.info(
                    "%-10d %-20s %-15.2f %-15.2f",
                    worker_count, latency_str, result.fps, result.ram_peak
                )

        if verbose and report.results:
            best_fps = max(report.results, key=lambda x: x.fps)
            logger.info("=" * 70)
            logger.info("Best FPS: workers=%d (%.2f frames/s)", best_fps.worker_count, best_fps.fps)

        return report

    def export(self, report: BenchmarkReport, output_path: str, format: str = "csv") -> str:
        """
        Xuất báo cáo ra file.

        Args:
            report: BenchmarkReport
            output_path: File output
            format: "csv" hoặc "json"
        """
        format = format.lower()

        if format == "json":
            with open(output_path, "w", encoding="utf-8") as f:
                json.dump(report.to_dict(), f, indent=2, ensure_ascii=False)

        elif format == "csv":
            with open(output_path, "w", newline="", encoding="utf-8") as f:
                writer = csv.writer(f)
                writer.writerow(["worker_count", "latency_avg_ms", "latency_std_ms", "fps", "ram_peak_mb"])
                for r in report.results:
                    writer.writerow([r.worker_count, f"{r.latency_avg:.4f}",
                                    f"{r.latency_std:.4f}", f"{r.fps:.4f}", f"{r.ram_peak:.4f}"])
        else:
            raise ValueError(f"Unsupported format: {format}. Use 'csv' or 'json'")

        logger.info("Report saved: %s", output_path)
        return output_path
