import logging
from typing import Callable, List, Optional

from ..clients.query_service import QueryServiceClient
from ..entities.waveform import DecimationRequest, WaveformResult
from ..enums.drill_down import FetchStatus
from ..repos.waveform_repo import WaveformRepository
from ..utils.generation import GenerationCounter

logger = logging.getLogger(__name__)

ResultListener = Callable[[WaveformResult], None]


class WaveformDownsampler:
    """Holds the decimated samples of the latest final window."""

    def __init__(self, query_client: QueryServiceClient):
        self.repo = WaveformRepository(query_client)
        self.result = WaveformResult()
        self._generation = GenerationCounter()
        self._listeners: List[ResultListener] = []

    @property
    def status(self) -> FetchStatus:
        return self.result.status

    @property
    def samples(self):
        return self.result.samples

    def add_listener(self, listener: ResultListener) -> None:
        """
        Called with every result that is still current when it lands, and with the
        empty LOADING result when a load moves to another window.
        """
        self._listeners.append(listener)

    async def load(self, request: DecimationRequest) -> Optional[WaveformResult]:
        """
        Replace the samples with a fresh decimation of the request window.

        Returns None when another load() or reset() superseded this one while the
        query was in flight; the superseded result is discarded.
        """
        token = self._generation.issue()
        previous = self.result.request
        self.result = WaveformResult(request=request, status=FetchStatus.LOADING)
        if previous is None or previous.window != request.window:
            # samples of another window must not stay on screen while loading
            self._notify(self.result)

        result = await self.repo.fetch_samples(request)
        if not self._generation.is_current(token):
            logger.debug(f"Discarding stale waveform for {request.window} (token {token})")
            return None

        self.result = result
        self._notify(result)
        return result

    def reset(self) -> None:
        """Drop the samples and any in-flight load."""
        self._generation.invalidate()
        self.result = WaveformResult()
        self._notify(self.result)

    def _notify(self, result: WaveformResult) -> None:
        for listener in self._listeners:
            listener(result)
