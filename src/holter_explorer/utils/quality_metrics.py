from typing import List

import numpy as np

from ..entities.waveform import LeadQuality, QualitySummary, WaveformSample


def summarize_quality(samples: List[WaveformSample]) -> QualitySummary:
    """Per-lead share of usable samples (lead on and quality flag set) and of lead-off samples."""
    if not samples:
        return QualitySummary(
            sample_count=0,
            leads=[LeadQuality(channel=ch, quality_percent=0.0, lead_off_percent=0.0) for ch in (1, 2, 3)],
        )

    lead_p = np.array([s.lead_on_p for s in samples], dtype=bool)
    lead_n = np.array([s.lead_on_n for s in samples], dtype=bool)
    quality = np.array([s.quality for s in samples], dtype=bool)
    lead_on = lead_p & lead_n

    usable_pct = (lead_on & quality).mean(axis=0) * 100.0
    lead_off_pct = (~lead_on).mean(axis=0) * 100.0

    leads = [
        LeadQuality(
            channel=i + 1,
            quality_percent=round(float(usable_pct[i]), 2),
            lead_off_percent=round(float(lead_off_pct[i]), 2),
        )
        for i in range(3)
    ]
    return QualitySummary(sample_count=len(samples), leads=leads)
