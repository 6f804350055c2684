"""
Detector contract.

A detector scans an immutable PriceSeries and proposes candidate keypoints
(decision frames) with a confidence in [0, 1]. Detectors never choose the final
keypoints themselves; that is the selector's job, so every detector here is a
pure function of the series and its configuration.

Time semantics:
- `frame_index` is the bar index inside the scanned series.
- Detectors may look at bars on both sides of a candidate (they label a
  historical series offline); the game only ever shows the player bars up to
  and including the keypoint.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Type

from market.types import PriceSeries
from utils import clamp, config_from_mapping


class KeypointCategory(str, Enum):
    LOCAL_HIGH = "LOCAL_HIGH"
    LOCAL_LOW = "LOCAL_LOW"
    BULLISH_CROSS = "BULLISH_CROSS"
    BEARISH_CROSS = "BEARISH_CROSS"


@dataclass(frozen=True)
class KeypointCandidate:
    frame_index: int
    confidence: float
    category: KeypointCategory
    rationale: str = ""
    detector: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self) -> None:
        if int(self.frame_index) < 0:
            raise ValueError(f"frame_index must be >= 0, got {self.frame_index}")
        object.__setattr__(self, "frame_index", int(self.frame_index))
        object.__setattr__(self, "confidence", clamp(self.confidence))


# The selected candidates are the game's keypoints.
Keypoint = KeypointCandidate


class Detector(ABC):
    """Base class for detector plugins. Subclasses set the class attributes."""

    name: ClassVar[str] = ""
    version: ClassVar[str] = "1.0.0"
    description: ClassVar[str] = ""
    # Higher value runs (and is listed) first.
    priority: ClassVar[int] = 100
    config_cls: ClassVar[Type[Any]]

    def __init__(self, config: Optional[Any] = None):
        self.config = config if config is not None else self.config_cls()

    @classmethod
    def from_config(cls, mapping: Optional[Mapping[str, Any]] = None) -> "Detector":
        return cls(config_from_mapping(cls.config_cls, mapping))

    @abstractmethod
    def min_data_points(self) -> int:
        ...

    @abstractmethod
    def detect(
        self,
        series: PriceSeries,
        min_count: int = 0,
        max_count: int = 0,
        seed: int = 0,
    ) -> List[KeypointCandidate]:
        """
        Return candidates ordered by frame index; [] when the series is shorter
        than `min_data_points()`. `min_count`/`max_count`/`seed` are hints only.
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.config!r})"
