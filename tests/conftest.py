import asyncio
import json
import math
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

import httpx
import pytest

from holter_explorer.clients.query_service import QueryServiceClient
from holter_explorer.entities.waveform import WaveformSample
from holter_explorer.services.query_tracker import QueryTracker
from holter_explorer.utils.time_utils import parse_iso, to_iso

BASE_URL = "http://query.test"
API_KEY = "test-key"
DAY = "2024-03-10"


def json_response(status: int, payload) -> httpx.Response:
    # json.dumps keeps NaN, which lets tests feed non-finite amplitudes
    return httpx.Response(status, content=json.dumps(payload), headers={"content-type": "application/json"})


class FakeQueryService:
    """In-memory stand-in for the aggregation and downsampling RPC endpoints."""

    def __init__(self):
        self.days: List[str] = [DAY, "2024-03-11"]
        self.span: List[Dict] = [
            {"earliest_time": "2024-03-10T08:15:00Z", "latest_time": "2024-03-11T20:40:00Z"}
        ]
        # quality(bucket_index, bucket_seconds) -> percent, or None to leave the bucket out
        self.quality: Callable[[int, int], Optional[float]] = lambda index, seconds: 80.0
        self.aggregate_override: Optional[Callable[[Dict], List[Dict]]] = None
        self.downsample_override: Optional[Callable[[Dict], List[Dict]]] = None
        self.sample_count = 10
        self.failures: Dict[str, int] = {}
        self.gates: Dict[str, List[asyncio.Event]] = {}
        self.calls: List[tuple] = []
        self.headers: List[httpx.Headers] = []

    def calls_to(self, function: str) -> List[Dict]:
        return [params for name, params in self.calls if name == function]

    def gate(self, function: str) -> asyncio.Event:
        """Hold the next call to a function until the returned event is set."""
        event = asyncio.Event()
        self.gates.setdefault(function, []).append(event)
        return event

    async def wait_for_calls(self, function: str, count: int = 1) -> None:
        """Yield to the event loop until a function has been called count times."""
        for _ in range(1000):
            if len(self.calls_to(function)) >= count:
                return
            await asyncio.sleep(0)
        raise AssertionError(f"{function} was called {len(self.calls_to(function))} times, expected {count}")

    async def handle(self, request: httpx.Request) -> httpx.Response:
        function = request.url.path.rsplit("/", 1)[-1]
        params = json.loads(request.content or b"{}")
        self.calls.append((function, params))
        self.headers.append(request.headers)

        pending = self.gates.get(function)
        if pending:
            await pending.pop(0).wait()

        if function in self.failures:
            return json_response(self.failures[function], {"message": f"{function} failed"})

        if function == "get_pod_days":
            return json_response(200, [{"day_value": d} for d in self.days])
        if function == "get_pod_earliest_latest":
            return json_response(200, self.span)
        if function == "aggregate_leads":
            rows = self.aggregate_override(params) if self.aggregate_override else self._aggregate(params)
            return json_response(200, rows)
        if function == "peak_preserving_downsample_ecg":
            rows = self.downsample_override(params) if self.downsample_override else self._downsample(params)
            return json_response(200, rows)
        return json_response(404, {"message": f"unknown function {function}"})

    def _aggregate(self, params: Dict) -> List[Dict]:
        start = parse_iso(params["p_time_start"])
        end = parse_iso(params["p_time_end"])
        seconds = params["p_bucket_seconds"]
        count = int((end - start).total_seconds() // seconds)
        rows = []
        for i in range(count):
            quality = self.quality(i, seconds)
            if quality is None:
                continue
            rows.append(aggregate_row(start + timedelta(seconds=i * seconds), quality))
        return rows

    def _downsample(self, params: Dict) -> List[Dict]:
        start = parse_iso(params["p_time_start"])
        end = parse_iso(params["p_time_end"])
        count = min(self.sample_count, params["p_max_pts"])
        step = (end - start) / count
        return [
            downsample_row(start + i * step, (10 * math.sin(i), 20.0 + i, -5.0 - i))
            for i in range(count)
        ]


def aggregate_row(time_bucket: datetime, quality: float, lead_on: float = 1.0) -> Dict:
    row = {"time_bucket": to_iso(time_bucket)}
    for ch in (1, 2, 3):
        row[f"lead_on_p_{ch}"] = lead_on
        row[f"lead_on_n_{ch}"] = lead_on
        row[f"quality_{ch}_percent"] = quality
    return row


def downsample_row(sample_time: datetime, values, lead_on: bool = True, quality: bool = True) -> Dict:
    row = {"sample_time": to_iso(sample_time)}
    for ch, value in zip((1, 2, 3), values):
        row[f"downsampled_channel_{ch}"] = value
        row[f"lead_on_p_{ch}"] = lead_on
        row[f"lead_on_n_{ch}"] = lead_on
        row[f"quality_{ch}"] = quality
    return row


def make_samples(
    values: List[float],
    lead_on: Optional[List[bool]] = None,
    start: datetime = datetime(2024, 3, 10, 10, 0, tzinfo=timezone.utc),
    step_ms: int = 1000,
) -> List[WaveformSample]:
    """Samples with the same value on all three channels."""
    lead_on = lead_on or [True] * len(values)
    return [
        WaveformSample(
            sample_time=start + timedelta(milliseconds=i * step_ms),
            channels=(v, v, v),
            lead_on_p=(on, on, on),
            lead_on_n=(on, on, on),
            quality=(on, on, on),
        )
        for i, (v, on) in enumerate(zip(values, lead_on))
    ]


@pytest.fixture
def fake_service() -> FakeQueryService:
    return FakeQueryService()


@pytest.fixture
def query_client(fake_service) -> QueryServiceClient:
    return QueryServiceClient(
        base_url=BASE_URL,
        api_key=API_KEY,
        transport=httpx.MockTransport(fake_service.handle),
        tracker=QueryTracker(max_history=100),
    )
