"""Result scoring and reranking."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, Optional, Sequence

import numpy as np

from cloudfinder.models import Intermediate, PersonResult, SearchResult, SearchResultSet

LOGGER = logging.getLogger(__name__)


def median(values: Sequence[float]) -> float:
    """Median of a non-empty sequence; the mean of the middle pair for even lengths."""
    if len(values) == 0:
        raise ValueError("median() of an empty sequence")
    return float(np.median(np.asarray(values, dtype="float64")))


def now_millis() -> int:
    return int(time.time() * 1000)


@dataclass(slots=True)
class ScoringParams:
    # Query independent boosts. Title/body weighting lives in the local index.
    boosts: Dict[str, float] = field(default_factory=lambda: {"freshness": 0.5})


class Scorer:
    """Applies a freshness boost to result scores, then sorts and truncates."""

    def __init__(
        self,
        params: ScoringParams | None = None,
        clock: Callable[[], int] = now_millis,
    ) -> None:
        self.params = params or ScoringParams()
        self.clock = clock

    def rerank(
        self,
        results: Sequence[SearchResult],
        people_results: Sequence[PersonResult],
        limit: Optional[int],
    ) -> SearchResultSet:
        now = self.clock()
        timestamps = [
            r.doc.modification_timestamp for r in results if r.doc.modification_timestamp is not None
        ]
        median_modified_ts = median(timestamps) if timestamps else None
        freshness_stats = {
            "now": now,
            "median_modified_ts": median_modified_ts,
            "modified_timestamps": timestamps,
        }

        # sorted() is stable, so equal scores keep their incoming order.
        scored = sorted(
            (self._score_result(r, now, median_modified_ts) for r in results),
            key=lambda r: r.score,
            reverse=True,
        )
        LOGGER.debug("Reranked %d results", len(scored))

        return SearchResultSet(
            results=tuple(scored[:limit] if limit else scored),
            people_results=tuple(people_results),
            total_count=len(scored),
            debug_lines=(f"{len(results)} results",),
            # Rendered lazily by the UI, never used for scoring.
            debug_stats={"freshness": freshness_stats},
        )

    def _score_result(
        self, result: SearchResult, now: int, median_modified_ts: Optional[float]
    ) -> SearchResult:
        ir_score = result.score
        freshness_boost = 0.0
        modified = result.doc.modification_timestamp
        if modified is not None and median_modified_ts is not None and now != median_modified_ts:
            freshness_boost = (
                self.params.boosts["freshness"]
                * (modified - median_modified_ts)
                / (now - median_modified_ts)
            )
        # Additive until remote results carry comparable scores.
        score = ir_score + freshness_boost
        return replace(
            result,
            score=score,
            intermediate=Intermediate(ir_score=ir_score, freshness_boost=freshness_boost),
        )
