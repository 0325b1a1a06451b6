import math
from typing import Optional

from ..app_settings import app_settings


def auto_point_budget(
    duration_seconds: float,
    points_per_second: Optional[float] = None,
    points_min: Optional[int] = None,
    points_max: Optional[int] = None,
) -> int:
    """Budget that grows with the window duration, clamped to the configured bounds."""
    pps = app_settings.auto_points_per_second if points_per_second is None else points_per_second
    lower = app_settings.points_min if points_min is None else points_min
    upper = app_settings.points_max if points_max is None else points_max
    wanted = math.ceil(max(0.0, duration_seconds) * pps)
    return max(lower, min(upper, wanted))


def resolve_point_budget(duration_seconds: float, override: Optional[int] = None) -> int:
    """
    Maximum number of points requested from the downsampling query.

    A positive override is forwarded as is, even above points_max; None or a
    non-positive value falls back to the automatic budget.
    """
    if override is not None and override > 0:
        return override
    return auto_point_budget(duration_seconds)
