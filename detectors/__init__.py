"""
Keypoint detector plugins.

Each detector module exports a Detector subclass; DETECTOR_REGISTRY maps the
plugin name to its class.
"""
from typing import Any, List, Mapping, Optional, Sequence

from detectors.contracts import Detector, Keypoint, KeypointCandidate, KeypointCategory
from detectors.local_extrema import LocalExtremaConfig, LocalExtremaDetector
from detectors.macd_cross import MacdCrossConfig, MacdCrossDetector
from errors import ConfigurationError

# Detector registry - maps detector names to their classes
DETECTOR_REGISTRY = {
    LocalExtremaDetector.name: LocalExtremaDetector,
    MacdCrossDetector.name: MacdCrossDetector,
}


def build_detectors(
    names: Optional[Sequence[str]] = None,
    configs: Optional[Mapping[str, Mapping[str, Any]]] = None,
) -> List[Detector]:
    """
    Instantiate detectors by name (all registered ones when `names` is None),
    highest priority first.
    """
    configs = configs or {}
    selected = list(names) if names is not None else list(DETECTOR_REGISTRY)
    out: List[Detector] = []
    for name in selected:
        try:
            cls = DETECTOR_REGISTRY[name]
        except KeyError as exc:
            raise ConfigurationError(f"Unknown detector: {name}") from exc
        out.append(cls.from_config(configs.get(name)))
    unknown = set(configs) - set(selected)
    if unknown:
        raise ConfigurationError(f"Configuration given for detectors that are not enabled: {sorted(unknown)}")
    out.sort(key=lambda d: -d.priority)
    return out


from detectors.selector import KeypointSelection, detect_keypoints, select_keypoints  # noqa: E402

__all__ = [
    'DETECTOR_REGISTRY',
    'Detector',
    'Keypoint',
    'KeypointCandidate',
    'KeypointCategory',
    'KeypointSelection',
    'LocalExtremaConfig',
    'LocalExtremaDetector',
    'MacdCrossConfig',
    'MacdCrossDetector',
    'build_detectors',
    'detect_keypoints',
    'select_keypoints',
]
