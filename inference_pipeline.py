"""
ANPR Inference Pipeline

Pipeline nhận dạng biển số cổ điển, kế thừa từ base class InferenceModel:

    frame -> preprocess -> localize plate -> segment characters
          -> classify glyphs (k-NN) -> plate string

Hỗ trợ:
- Inference đơn lẻ và batch (batch chạy trên thread pool)
- Cấu hình từng bước từ file YAML
- Input là đường dẫn, bytes, numpy array hoặc Frame
- Train, lưu và load glyph model
"""

import argparse
import json
import logging
import os
import sys
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import yaml

from anpr_errors import InvalidFrame
from anpr_types import (
    Frame,
    GlyphImage,
    GlyphPrediction,
    PipelineStage,
    RecognitionResult,
    RecognitionStatus,
    RegionOfInterest,
)
from char_segmentation import CharacterSegmenter
from glyph_classifier import DEFAULT_K, GlyphClassifier, TrainedModel, load_model, save_model, train
from glyph_dataset import load_glyph_dataset, render_glyph_samples
from plate_localization import PlateLocalizer
from preprocessing import PreprocessingPipeline
from utils.image_utils import get_image_info, to_frame
from utils.text_utils import is_valid_plate, normalize_plate


logger = logging.getLogger(__name__)

FrameInput = Union[str, bytes, np.ndarray, Frame]


# =============================================================================
# CONFIG
# =============================================================================

def load_config(config_path: str) -> Dict[str, Any]:
    """
    Đọc file config YAML của pipeline.

    Args:
        config_path: Đường dẫn tới pipeline_config.yaml

    Returns:
        Config dict (file rỗng -> {})
    """
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Config không tìm thấy: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}

    if not isinstance(config, dict):
        raise ValueError(f"Config phải là một mapping: {config_path}")
    return config


# =============================================================================
# BASE CLASS
# =============================================================================

class InferenceModel:
    """
    Base class cho inference pipeline.
    """

    def __init__(self, model_path: Optional[str] = None):
        """
        Khởi tạo InferenceModel.

        Args:
            model_path: Đường dẫn model đã lưu (có thể chưa tồn tại)
        """
        self.model_path = model_path
        self.model = None

    def load_model(self) -> Any:
        """Tải model - cần implement ở class con"""
        raise NotImplementedError("Cần implement load_model()")

    def preprocess(self, data: Any) -> Any:
        """Tiền xử lý dữ liệu - cần implement ở class con"""
        raise NotImplementedError("Cần implement preprocess()")

    def infer(self, preprocessed_data: Any) -> Any:
        """Thực hiện inference - cần implement ở class con"""
        raise NotImplementedError("Cần implement infer()")

    def postprocess(self, model_output: Any) -> Any:
        """Hậu xử lý kết quả - cần implement ở class con"""
        raise NotImplementedError("Cần implement postprocess()")

    def run_inference(self, raw_data: Any) -> Any:
        """Chạy toàn bộ pipeline - cần implement ở class con"""
        raise NotImplementedError("Cần implement run_inference()")


# =============================================================================
# ANPR PIPELINE
# =============================================================================

class ANPRPipeline(InferenceModel):
    """
    Pipeline ANPR cổ điển với glyph classifier k-NN.

    Model đã train là bất biến và dùng chung cho mọi worker thread. Model được
    gán (set_model / load_model) trước khi submit bất kỳ batch nào.

    Example:
        ```python
        pipeline = ANPRPipeline.from_config("pipeline_config.yaml")

        # Single inference
        result = pipeline.run_inference("path/to/car.jpg")
        print(result.status, result.text)

        # Batch inference
        results = pipeline.run_inference(["car1.jpg", "car2.jpg"])

        # Train từ thư mục có nhãn và lưu lại
        pipeline.train_model(load_glyph_dataset("dataset/"))
        pipeline.save_model("models/glyphs.npz")
        ```
    """

    def __init__(
        self,
        model: Optional[TrainedModel] = None,
        model_path: Optional[str] = None,
        preprocessing_config: Optional[Dict[str, Any]] = None,
        localization_config: Optional[Dict[str, Any]] = None,
        segmentation_config: Optional[Dict[str, Any]] = None,
        postprocessing_config: Optional[Dict[str, Any]] = None,
        max_workers: int = 4
    ):
        """
        Khởi tạo ANPRPipeline.

        Args:
            model: Model đã train (ưu tiên hơn model_path)
            model_path: File model .npz ghi bởi save_model()
            preprocessing_config: Section `preprocessing` của config
            localization_config: Section `localization` của config
            segmentation_config: Section `segmentation` của config
            postprocessing_config: Section `postprocessing` của config
            max_workers: Số thread cho batch inference
        """
        super().__init__(model_path)

        if max_workers < 1:
            raise ValueError(f"max_workers phải >= 1, nhận được: {max_workers}")

        self.max_workers = max_workers
        self.preprocessor = PreprocessingPipeline(preprocessing_config)
        self.localizer = PlateLocalizer(localization_config)
        self.segmenter = CharacterSegmenter(segmentation_config)
        self.postprocessing_config = postprocessing_config or {"normalize": True}
        self.classifier: Optional[GlyphClassifier] = None

        if model is not None:
            self.set_model(model)

        logger.info(
            "ANPRPipeline initialized: model=%s, workers=%d, preprocessing=%s, %r",
            self.model if self.model is not None else self.model_path,
            self.max_workers,
            self.preprocessor.get_enabled_steps(),
            self.localizer,
        )

    @classmethod
    def from_config(cls, config_path: str) -> "ANPRPipeline":
        """
        Factory method: Tạo pipeline từ file config YAML.

        `model.path` tương đối được tính theo thư mục chứa file config.

        Args:
            config_path: Đường dẫn tới pipeline_config.yaml

        Returns:
            ANPRPipeline instance
        """
        config = load_config(config_path)

        model_cfg = config.get("model") or {}
        inference_cfg = config.get("inference") or {}

        model_path = model_cfg.get("path")
        if model_path and not os.path.isabs(model_path):
            model_path = os.path.join(os.path.dirname(os.path.abspath(config_path)), model_path)

        return cls(
            model_path=model_path,
            preprocessing_config=config.get("preprocessing") or {},
            localization_config=config.get("localization") or {},
            segmentation_config=config.get("segmentation") or {},
            postprocessing_config=config.get("postprocessing") or {},
            max_workers=inference_cfg.get("max_workers", 4)
        )

    # =========================================================================
    # MODEL
    # =========================================================================

    def set_model(self, model: TrainedModel):
        """Gán model đã train cho mọi lần chạy tiếp theo."""
        classifier = GlyphClassifier(model)
        self.classifier = classifier
        self.model = model

    def load_model(self) -> TrainedModel:
        """
        Load glyph model từ model_path.

        Returns:
            TrainedModel
        """
        if not self.model_path:
            raise FileNotFoundError(
                "Chưa có model: truyền model=, model_path= hoặc gọi train_model() trước"
            )

        logger.info("Loading model from %s...", self.model_path)
        self.set_model(load_model(self.model_path))
        return self.model

    def train_model(
        self,
        samples: Iterable[Tuple[GlyphImage, str]],
        k: int = DEFAULT_K
    ) -> TrainedModel:
        """
        Train glyph model mới và gán cho pipeline.

        Raises:
            InsufficientTrainingData: ít hơn k mẫu
        """
        model = train(samples, k=k)
        self.set_model(model)
        return model

    def save_model(self, path: Optional[str] = None) -> str:
        """Lưu model hiện tại (vào model_path nếu path là None)."""
        if self.model is None:
            raise ValueError("Chưa có model để lưu")
        path = path or self.model_path
        if not path:
            raise ValueError("Chưa có đường dẫn output")
        self.model_path = save_model(self.model, path)
        return self.model_path

    def ensure_model(self) -> GlyphClassifier:
        if self.classifier is None:
            self.load_model()
        return self.classifier

    # =========================================================================
    # STAGES
    # =========================================================================

    def preprocess(self, data: FrameInput) -> np.ndarray:
        """Grayscale / denoise / CLAHE. Raise InvalidFrame nếu input lỗi."""
        return self.preprocessor.process(to_frame(data))

    def localize(self, preprocessed: np.ndarray) -> Optional[RegionOfInterest]:
        return self.localizer.localize(preprocessed)

    def segment(self, plate_crop: np.ndarray) -> List[GlyphImage]:
        return self.segmenter.segment(plate_crop)

    def infer(self, glyphs: Sequence[GlyphImage]) -> List[GlyphPrediction]:
        """Phân loại các glyph theo đúng thứ tự."""
        return self.ensure_model().classify_many(glyphs)

    def postprocess(self, model_output: str) -> str:
        if self.postprocessing_config.get("normalize", True):
            return normalize_plate(model_output)
        return model_output

    # =========================================================================
    # RUN
    # =========================================================================

    def run_single(self, data: FrameInput) -> RecognitionResult:
        """
        Nhận dạng biển số trong một frame.

        Các bước: PREPROCESSING -> LOCALIZING -> SEGMENTING -> CLASSIFYING -> DONE.
        Dừng sớm với NO_PLATE (text None) hoặc NO_GLYPHS (text "").

        Args:
            data: Đường dẫn, bytes, numpy array hoặc Frame

        Returns:
            RecognitionResult

        Raises:
            InvalidFrame: frame rỗng, sai format hoặc không decode được
        """
        start = time.perf_counter()
        classifier = self.ensure_model()

        def finish(status: RecognitionStatus, stage: PipelineStage, **kwargs) -> RecognitionResult:
            result = RecognitionResult(
                status=status,
                stage=stage,
                latency_ms=(time.perf_counter() - start) * 1000,
                **kwargs
            )
            logger.debug("%s: %s %r", frame.source, status.value, result.text)
            return result

        frame = to_frame(data)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("%s: %s", frame.source, get_image_info(frame.data))

        preprocessed = self.preprocessor.process(frame)

        roi = self.localize(preprocessed)
        if roi is None:
            return finish(RecognitionStatus.NO_PLATE, PipelineStage.LOCALIZING)

        # Cắt ký tự từ frame gốc, không phải ảnh đã tăng tương phản
        glyphs = self.segment(roi.view(frame.data))
        if not glyphs:
            return finish(RecognitionStatus.NO_GLYPHS, PipelineStage.SEGMENTING, text="", roi=roi)

        predictions = classifier.classify_many(glyphs)
        text = self.postprocess("".join(p.label for p in predictions))
        if not is_valid_plate(
            text,
            self.postprocessing_config.get("min_length", 1),
            self.postprocessing_config.get("max_length", 10)
        ):
            logger.debug("%s: unusual plate text %r", frame.source, text)

        return finish(
            RecognitionStatus.SUCCESS, PipelineStage.DONE,
            text=text, roi=roi, predictions=predictions
        )

    def _run_isolated(self, data: FrameInput) -> RecognitionResult:
        """run_single() cho batch worker: frame lỗi trở thành một result."""
        try:
            return self.run_single(data)
        except (InvalidFrame, FileNotFoundError) as e:
            logger.warning("Invalid frame in batch: %s", e)
            return RecognitionResult(
                status=RecognitionStatus.INVALID_FRAME,
                stage=PipelineStage.PREPROCESSING,
                error=str(e)
            )

    def run_batch(self, items: Sequence[FrameInput]) -> List[RecognitionResult]:
        """
        Nhận dạng nhiều frame song song.

        Kết quả trả về theo thứ tự input. Frame lỗi cho result INVALID_FRAME
        và không ảnh hưởng tới các frame khác.
        """
        if not items:
            return []

        # Load model trước khi worker nào chạy
        self.ensure_model()

        workers = min(self.max_workers, len(items))
        if workers == 1:
            return [self._run_isolated(item) for item in items]

        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(self._run_isolated, items))

    def run_inference(
        self,
        raw_data: Union[FrameInput, List[FrameInput]]
    ) -> Union[RecognitionResult, List[RecognitionResult]]:
        """
        Chạy pipeline trên một frame hoặc list frame.

        Returns:
            - RecognitionResult nếu input đơn lẻ
            - List[RecognitionResult] nếu input là list
        """
        if isinstance(raw_data, list):
            return self.run_batch(raw_data)
        return self.run_single(raw_data)

    def read_plate(self, data: FrameInput) -> Optional[str]:
        """Tiện ích: trả về text biển số, None nếu không tìm thấy biển."""
        return self.run_single(data).text

    def __repr__(self) -> str:
        return (
            f"ANPRPipeline(\n"
            f"  model={self.model!r},\n"
            f"  model_path='{self.model_path}',\n"
            f"  max_workers={self.max_workers},\n"
            f"  preprocessing_steps={self.preprocessor.get_enabled_steps()},\n"
            f"  localizer={self.localizer!r},\n"
            f"  segmenter={self.segmenter!r}\n"
            f")"
        )


# =============================================================================
# CLI
# =============================================================================

def _setup_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    )


def _cmd_train(args) -> int:
    config = load_config(args.config) if args.config else {}
    segmenter = CharacterSegmenter(config.get("segmentation") or {})

    if args.synthetic:
        samples = render_glyph_samples(segmenter=segmenter)
    else:
        samples = load_glyph_dataset(args.dataset, segmenter=segmenter)

    model = train(samples, k=args.k)
    save_model(model, args.output)
    return 0


def _cmd_recognize(args) -> int:
    pipeline = ANPRPipeline.from_config(args.config)
    if args.model:
        pipeline.model_path = args.model

    for image_path, result in zip(args.images, pipeline.run_batch(args.images)):
        print(json.dumps({"image": image_path, **result.to_dict()}))
    return 0


def _cmd_benchmark(args) -> int:
    from utils.benchmark_utils import Benchmarker

    pipeline = ANPRPipeline.from_config(args.config)
    benchmarker = Benchmarker(pipeline)
    report = benchmarker.run(
        args.images,
        worker_counts=args.workers,
        n_runs=args.runs,
        warmup_runs=args.warmup
    )
    if args.output:
        benchmarker.export(report, args.output, format=args.format)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Classical ANPR (OpenCV + k-NN)")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING, ...")
    sub = parser.add_subparsers(dest="command", required=True)

    p_train = sub.add_parser("train", help="Train and save a glyph model")
    source = p_train.add_mutually_exclusive_group(required=True)
    source.add_argument("--dataset", help="Directory with one sub-directory per label")
    source.add_argument("--synthetic", action="store_true", help="Use rendered Hershey glyphs")
    p_train.add_argument("--output", required=True, help="Output .npz path")
    p_train.add_argument("--k", type=int, default=DEFAULT_K)
    p_train.add_argument("--config", help="Pipeline config (segmentation section is used)")
    p_train.set_defaults(func=_cmd_train)

    p_rec = sub.add_parser("recognize", help="Read plates from images")
    p_rec.add_argument("--config", default="pipeline_config.yaml")
    p_rec.add_argument("--model", help="Override model.path from the config")
    p_rec.add_argument("images", nargs="+")
    p_rec.set_defaults(func=_cmd_recognize)

    p_bench = sub.add_parser("benchmark", help="Measure batch latency per worker count")
    p_bench.add_argument("--config", default="pipeline_config.yaml")
    p_bench.add_argument("--workers", type=int, nargs="+", default=[1, 2, 4])
    p_bench.add_argument("--runs", type=int, default=10)
    p_bench.add_argument("--warmup", type=int, default=2)
    p_bench.add_argument("--output", help="Report path")
    p_bench.add_argument("--format", choices=["csv", "json"], default="csv")
    p_bench.add_argument("images", nargs="+")
    p_bench.set_defaults(func=_cmd_benchmark)

    args = parser.parse_args(argv)

    level = args.log_level
    if level is None and getattr(args, "config", None) and os.path.exists(args.config):
        level = (load_config(args.config).get("logging") or {}).get("level")
    _setup_logging(level or "INFO")

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
