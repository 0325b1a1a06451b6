import logging
from typing import Dict, List, Optional

import numpy as np

from ..app_settings import app_settings
from ..entities.view import Point, RenderPlan, Tooltip, ViewTransform
from ..entities.waveform import WaveformSample
from ..enums.plot import Palette, YRangeOperation
from ..exceptions.explorer_exceptions import InvalidSelectionError
from ..utils.time_utils import to_epoch_ms

logger = logging.getLogger(__name__)

PALETTE_COLORS = {
    Palette.NORMAL: "rgba(129,230,217,0.8)",
    Palette.COLOR_BLIND: "rgba(0,120,180,0.9)",
}
CHANNEL_LABELS = {1: "Lead I", 2: "Lead II", 3: "Lead III"}

BACKGROUND = "#111111"
GRID_STEP_X = 50
GRID_STEP_Y = 25
NO_DATA = "No data"

ZOOM_IN_FACTOR = 1.1
ZOOM_OUT_FACTOR = 0.9
COMPRESS_FACTOR = 0.8
EXPAND_FACTOR = 1.2
FIT_PADDING = 0.1
KEY_PAN_PX = 20


class ChannelPlot:
    """
    One channel plot with its own view transform, pointer state, tooltip and palette.

    Holds the samples of the current waveform; replacing them keeps the transform.
    """

    def __init__(
        self,
        channel: int,
        label: Optional[str] = None,
        width: Optional[int] = None,
        height: Optional[int] = None,
    ):
        self.channel = channel
        self.label = label or CHANNEL_LABELS.get(channel, f"Channel {channel}")
        self.width = width or app_settings.plot_width
        self.height = height or app_settings.plot_height
        self.transform = ViewTransform(y_min=app_settings.default_y_min, y_max=app_settings.default_y_max)
        self.palette = Palette.NORMAL
        self.tooltip = Tooltip()
        self.samples: List[WaveformSample] = []

        self._panning = False
        self._last_x = 0.0
        self._times_ms = np.empty(0, dtype=np.float64)
        self._values = np.empty(0, dtype=np.float64)
        self._lead_on = np.empty(0, dtype=bool)

    # ===== data =====

    def set_samples(self, samples: List[WaveformSample]) -> None:
        self.samples = samples
        self.tooltip = Tooltip()
        if not samples:
            self._times_ms = np.empty(0, dtype=np.float64)
            self._values = np.empty(0, dtype=np.float64)
            self._lead_on = np.empty(0, dtype=bool)
            return
        epoch = np.array([to_epoch_ms(s.sample_time) for s in samples], dtype=np.float64)
        self._times_ms = epoch - epoch[0]
        self._values = np.array([s.value(self.channel) for s in samples], dtype=np.float64)
        self._lead_on = np.array([s.lead_on(self.channel) for s in samples], dtype=bool)

    # ===== coordinate math =====

    def _ms_in_view(self) -> float:
        total_ms = max(1.0, float(self._times_ms[-1])) if self._times_ms.size else 1.0
        return total_ms / self.transform.scale_x

    def _pan_ms_offset(self, ms_in_view: float) -> float:
        return (-self.transform.translate_x / self.width) * ms_in_view

    def x_coords(self) -> np.ndarray:
        ms_in_view = self._ms_in_view()
        pan = self._pan_ms_offset(ms_in_view)
        return ((self._times_ms - pan) / ms_in_view) * self.width

    def y_coords(self) -> np.ndarray:
        t = self.transform
        return self.height - ((self._values - t.y_min) / (t.y_max - t.y_min)) * self.height

    def _subpaths(self) -> List[List[Point]]:
        xs = self.x_coords()
        ys = self.y_coords()
        visible = (xs >= 0) & (xs <= self.width)

        subpaths: List[List[Point]] = []
        current: List[Point] = []
        for i in range(xs.size):
            if not self._lead_on[i]:
                # lead off lifts the pen even when off screen
                if current:
                    subpaths.append(current)
                    current = []
                continue
            if not visible[i]:
                continue
            current.append((float(xs[i]), float(ys[i])))
        if current:
            subpaths.append(current)
        return subpaths

    def render(self) -> RenderPlan:
        plan = RenderPlan(
            channel=self.channel,
            label=self.label,
            title=f"{self.label} (zoom x{self.transform.scale_x:.1f})",
            width=self.width,
            height=self.height,
            background=BACKGROUND,
            trace_color=PALETTE_COLORS[self.palette],
            grid_x=[float(x) for x in range(0, self.width + 1, GRID_STEP_X)],
            grid_y=[float(y) for y in range(0, self.height + 1, GRID_STEP_Y)],
            transform=self.transform.model_copy(),
            tooltip=self.tooltip.model_copy(),
        )
        if not self.samples:
            plan.placeholder = NO_DATA
            return plan
        plan.subpaths = self._subpaths()
        return plan

    # ===== interactions =====

    def wheel(self, delta_y: float) -> float:
        """Wheel up zooms in, anything else zooms out, within the configured bounds."""
        factor = ZOOM_IN_FACTOR if delta_y < 0 else ZOOM_OUT_FACTOR
        scale = self.transform.scale_x * factor
        self.transform.scale_x = max(app_settings.zoom_min, min(app_settings.zoom_max, scale))
        return self.transform.scale_x

    def pointer_down(self, x: float) -> None:
        self._panning = True
        self._last_x = x

    def pointer_move(self, x: float, y: float) -> Tooltip:
        if self._panning:
            self.transform.translate_x += x - self._last_x
            self._last_x = x
            return self.tooltip
        self.tooltip = self._tooltip_at(x, y)
        return self.tooltip

    def pointer_up(self) -> None:
        self._panning = False

    def pointer_leave(self) -> None:
        self._panning = False
        self.tooltip = Tooltip()

    @property
    def panning(self) -> bool:
        return self._panning

    def _tooltip_at(self, x: float, y: float) -> Tooltip:
        if not self.samples:
            return Tooltip()
        ms_in_view = self._ms_in_view()
        target_ms = self._pan_ms_offset(ms_in_view) + (x / self.width) * ms_in_view
        # linear scan, sample count is bounded by the point budget
        nearest = int(np.argmin(np.abs(self._times_ms - target_ms)))
        sample = self.samples[nearest]
        return Tooltip(
            visible=True,
            x=x,
            y=y,
            sample_time=sample.sample_time,
            value=sample.value(self.channel),
        )

    def compress_y_range(self) -> None:
        self.transform.y_min *= COMPRESS_FACTOR
        self.transform.y_max *= COMPRESS_FACTOR

    def expand_y_range(self) -> None:
        self.transform.y_min *= EXPAND_FACTOR
        self.transform.y_max *= EXPAND_FACTOR

    def fit_y_range(self) -> None:
        """Fit the amplitude range to the data with 10% padding. No-op on empty or flat data."""
        if not self._values.size:
            return
        lo = float(self._values.min())
        hi = float(self._values.max())
        if hi == lo:
            return
        pad = (hi - lo) * FIT_PADDING
        self.transform.y_min = lo - pad
        self.transform.y_max = hi + pad

    def apply_y_range(self, operation: YRangeOperation) -> ViewTransform:
        if operation == YRangeOperation.COMPRESS:
            self.compress_y_range()
        elif operation == YRangeOperation.EXPAND:
            self.expand_y_range()
        else:
            self.fit_y_range()
        return self.transform

    def toggle_palette(self) -> Palette:
        self.palette = Palette.NORMAL if self.palette == Palette.COLOR_BLIND else Palette.COLOR_BLIND
        return self.palette

    def handle_key(self, key: str) -> bool:
        """Keyboard shortcuts. Returns False for keys without a binding."""
        if key == "ArrowLeft":
            self.transform.translate_x -= KEY_PAN_PX
        elif key == "ArrowRight":
            self.transform.translate_x += KEY_PAN_PX
        elif key == "+":
            self.compress_y_range()
        elif key == "-":
            self.expand_y_range()
        elif key == "f":
            self.fit_y_range()
        elif key == "c":
            self.toggle_palette()
        else:
            return False
        return True


class WaveformRenderer:
    """The three channel plots of a waveform; each keeps its own transform across reloads."""

    def __init__(self, width: Optional[int] = None, height: Optional[int] = None, channels=(1, 2, 3)):
        self.plots: Dict[int, ChannelPlot] = {
            channel: ChannelPlot(channel, width=width, height=height) for channel in channels
        }

    def plot(self, channel: int) -> ChannelPlot:
        try:
            return self.plots[channel]
        except KeyError:
            raise InvalidSelectionError(f"Unknown channel {channel}") from None

    def load(self, samples: List[WaveformSample]) -> None:
        for plot in self.plots.values():
            plot.set_samples(samples)
        logger.debug(f"Renderer loaded {len(samples)} samples")

    def render(self, channel: int) -> RenderPlan:
        return self.plot(channel).render()

    def render_all(self) -> List[RenderPlan]:
        return [plot.render() for plot in self.plots.values()]
