"""Value objects passed between acquisition components."""

from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional


class ConfidenceTier(str, Enum):
    """Oracle's self-reported certainty bucket."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NONE = "none"

    @classmethod
    def parse(cls, value: Any) -> "ConfidenceTier":
        """Map arbitrary oracle output to a tier; unknown values become NONE."""
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return cls.NONE

    @property
    def actionable(self) -> bool:
        return self in (ConfidenceTier.HIGH, ConfidenceTier.MEDIUM)


class CaptureMethod(str, Enum):
    DIRECT_DOWNLOAD = "direct_download"
    SCREENSHOT = "screenshot"


@dataclass
class AcquisitionRequest:
    """One acquisition call."""
    manufacturer: Optional[str]
    model: Optional[str]
    product_name: Optional[str]
    output_dir: Path


@dataclass
class CandidateURL:
    """A URL proposed by the oracle. Consumed once, never persisted."""
    url: str
    confidence: ConfidenceTier
    source_label: Optional[str] = None


@dataclass
class StrategyResult:
    """Outcome of a single strategy attempt."""
    success: bool
    filename: Optional[str] = None
    filepath: Optional[Path] = None
    size_bytes: int = 0
    error: Optional[str] = None
    error_kind: Optional[str] = None  # AcquisitionError.kind

    @classmethod
    def failed(cls, error: Exception | str, kind: str | None = None) -> "StrategyResult":
        return cls(
            success=False,
            error=str(error),
            error_kind=kind or getattr(error, "kind", None),
        )


@dataclass
class CaptureResult:
    """Terminal output of the orchestrator."""
    success: bool
    filename: Optional[str] = None
    filepath: Optional[Path] = None
    size_bytes: int = 0
    method: Optional[CaptureMethod] = None
    source_url: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["filepath"] = str(self.filepath) if self.filepath else None
        data["method"] = self.method.value if self.method else None
        return data


@dataclass
class FetchOutcome:
    """Per-record result of the equivalence cache."""
    equipment_id: str
    success: bool
    image_path: Optional[str] = None
    reused: bool = False
    propagated: int = 0  # other records filled in
    capture: Optional[CaptureResult] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "equipment_id": self.equipment_id,
            "success": self.success,
            "image_path": self.image_path,
            "reused": self.reused,
            "propagated": self.propagated,
            "method": self.capture.method.value if self.capture and self.capture.method else None,
            "source_url": self.capture.source_url if self.capture else None,
            "error": self.error,
        }


@dataclass
class GroupDetail:
    """One (manufacturer, model) group in a bulk run."""
    manufacturer: str
    model: str
    equipment_count: int
    success: bool = False
    updated: int = 0
    image_path: Optional[str] = None
    method: Optional[str] = None
    error: Optional[str] = None


@dataclass
class BulkSummary:
    processed: int = 0
    success: int = 0
    failed: int = 0
    details: list[GroupDetail] = field(default_factory=list)

    def record(self, detail: GroupDetail) -> None:
        self.details.append(detail)
        self.processed += 1
        if detail.success:
            self.success += 1
        else:
            self.failed += 1

    def to_dict(self) -> dict:
        return asdict(self)
