from enum import Enum


class Palette(str, Enum):
    """Trace palettes of a channel plot."""
    NORMAL = "normal"
    COLOR_BLIND = "color_blind"


class YRangeOperation(str, Enum):
    """Manual amplitude range operators."""
    COMPRESS = "compress"
    EXPAND = "expand"
    FIT = "fit"


class ExportFormat(str, Enum):
    """Sample export formats."""
    JSON = "json"
    CSV = "csv"
    ARROW = "arrow"
