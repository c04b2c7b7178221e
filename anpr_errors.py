"""
Exceptions cho pipeline ANPR.

Chỉ lỗi thật sự mới là exception. "Không có biển số" và "không có glyph" là
kết quả bình thường, được báo qua RecognitionResult.status.
"""


class ANPRError(Exception):
    """Base class for all pipeline errors."""


class InvalidFrame(ANPRError):
    """Frame đầu vào rỗng, sai format, không decode được hoặc kiểu không hỗ trợ."""


class InsufficientTrainingData(ANPRError):
    """Fewer labelled exemplars than neighbours requested by k."""

    def __init__(self, n_samples: int, k: int):
        self.n_samples = n_samples
        self.k = k
        super().__init__(
            f"Need at least k={k} labelled glyphs to train, got {n_samples}"
        )


class ModelFormatError(ANPRError):
    """File model bị hỏng, sai cấu trúc hoặc version không được hỗ trợ."""
