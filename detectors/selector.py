"""
Keypoint selection.

Merges the candidates of every enabled detector into one ordered keypoint list.
Selection is a pure function of (candidates, min_count, max_count, seed): the
same inputs always give the same keypoints, so a game can be replayed and
audited from its seed alone.
"""

from __future__ import annotations

import logging
import random
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from detectors.contracts import Detector, KeypointCandidate
from errors import ConfigurationError
from market.types import PriceSeries

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KeypointSelection:
    keypoints: Tuple[KeypointCandidate, ...]
    seed: int
    candidate_counts: Dict[str, int] = field(default_factory=dict)
    failed_detectors: Tuple[str, ...] = ()

    @property
    def frame_indices(self) -> Tuple[int, ...]:
        return tuple(k.frame_index for k in self.keypoints)

    def __len__(self) -> int:
        return len(self.keypoints)


def _validate_counts(min_count: int, max_count: int) -> None:
    if min_count < 0:
        raise ConfigurationError(f"min_count must be >= 0, got {min_count}")
    if max_count < 1:
        raise ConfigurationError(f"max_count must be >= 1, got {max_count}")
    if min_count > max_count:
        raise ConfigurationError(f"min_count ({min_count}) must be <= max_count ({max_count})")


def select_keypoints(
    candidates_by_detector: Sequence[Sequence[KeypointCandidate]],
    min_count: int,
    max_count: int,
    seed: int,
) -> List[KeypointCandidate]:
    """
    1. concatenate candidates in detector order
    2. stable sort by confidence, descending
    3. drop repeated frame indices (first, i.e. most confident, wins)
    4. keep the top min(min_count, N) unconditionally
    5. shuffle the rest with Random(seed) and accept each with probability equal
       to its confidence until max_count keypoints are held
    6. return ascending by frame index
    """
    _validate_counts(int(min_count), int(max_count))

    merged: List[KeypointCandidate] = [c for group in candidates_by_detector for c in group]
    merged.sort(key=lambda c: c.confidence, reverse=True)

    seen = set()
    unique: List[KeypointCandidate] = []
    for c in merged:
        if c.frame_index in seen:
            continue
        seen.add(c.frame_index)
        unique.append(c)

    rng = random.Random(seed)
    guaranteed = min(int(min_count), len(unique))
    selected = unique[:guaranteed]
    remaining = unique[guaranteed:]
    rng.shuffle(remaining)
    for c in remaining:
        if len(selected) >= max_count:
            break
        if rng.random() < c.confidence:
            selected.append(c)

    selected.sort(key=lambda c: c.frame_index)
    return selected


def _run_detector(detector: Detector, series: PriceSeries, min_count: int, max_count: int, seed: int):
    return list(detector.detect(series, min_count, max_count, seed))


def detect_keypoints(
    series: PriceSeries,
    min_count: int,
    max_count: int,
    seed: int,
    detectors: Optional[Sequence[Detector]] = None,
    parallel: bool = True,
) -> KeypointSelection:
    """
    Run every detector against `series` and select keypoints.

    A detector that raises is logged and left out; the others still contribute.
    Results are gathered in detector order, so running in a thread pool gives
    the same selection as running sequentially.
    """
    _validate_counts(int(min_count), int(max_count))
    if detectors is None:
        from detectors import build_detectors

        detectors = build_detectors()

    results: List[Optional[List[KeypointCandidate]]] = [None] * len(detectors)
    failed: List[str] = []

    if parallel and len(detectors) > 1:
        with ThreadPoolExecutor(max_workers=len(detectors), thread_name_prefix="detector") as pool:
            futures = [pool.submit(_run_detector, d, series, min_count, max_count, seed) for d in detectors]
            for idx, (d, fut) in enumerate(zip(detectors, futures)):
                try:
                    results[idx] = fut.result()
                except Exception:
                    logger.warning("Detector %s failed on %s; excluding it", d.name, series, exc_info=True)
                    failed.append(d.name)
    else:
        for idx, d in enumerate(detectors):
            try:
                results[idx] = _run_detector(d, series, min_count, max_count, seed)
            except Exception:
                logger.warning("Detector %s failed on %s; excluding it", d.name, series, exc_info=True)
                failed.append(d.name)

    groups = [r for r in results if r is not None]
    counts = {d.name: len(r) for d, r in zip(detectors, results) if r is not None}
    keypoints = select_keypoints(groups, min_count, max_count, seed)
    logger.debug(
        "Selected %d keypoints from %s (candidates=%s, failed=%s, seed=%s)",
        len(keypoints), series, counts, failed, seed,
    )
    return KeypointSelection(
        keypoints=tuple(keypoints),
        seed=int(seed),
        candidate_counts=counts,
        failed_detectors=tuple(failed),
    )
