"""CRF selection from inspected media geometry and bit rate.

The ladder itself lives in `QualityConfig`; this module only walks it.
"""

import logging
from typing import Optional
from wbc.config.models import QualityConfig, QualityTier
from wbc.domain.events import ConsoleMessage
from wbc.domain.models import MediaSummary
from wbc.infrastructure.event_bus import EventBus


class QualityPolicy:
    """Maps a MediaSummary (or None) to a CRF value.

    Deterministic for a given config: the same summary always yields the same
    CRF. The only side effect is the fallback warning for missing media info.
    """

    def __init__(self, config: Optional[QualityConfig] = None, event_bus: Optional[EventBus] = None):
        self.config = config or QualityConfig()
        self.event_bus = event_bus
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def _matches(tier: QualityTier, summary: MediaSummary) -> bool:
        if summary.height >= tier.min_height:
            return True
        return (
            tier.min_bit_rate is not None
            and summary.bit_rate is not None
            and summary.bit_rate >= tier.min_bit_rate
        )

    def tier_for(self, summary: MediaSummary) -> QualityTier:
        for tier in self.config.tiers:
            if self._matches(tier, summary):
                return tier
        # Unreachable with a validated config (catch-all tier is mandatory)
        raise ValueError(f"No quality tier matches {summary.width}x{summary.height}")

    def decide(self, summary: Optional[MediaSummary]) -> int:
        if summary is None:
            message = f"Using default CRF {self.config.default_crf} due to missing media info."
            self.logger.warning(message)
            if self.event_bus:
                self.event_bus.publish(ConsoleMessage(level="warning", message=message))
            return self.config.default_crf
        return self.tier_for(summary).crf
