class GenerationCounter:
    """
    Monotonic token source used to discard results of superseded fetches.

    A fetch takes a token with issue() before awaiting and checks is_current(token)
    once the response arrives. Any later issue() or invalidate() makes the earlier
    token stale.
    """

    def __init__(self):
        self._generation = 0

    def issue(self) -> int:
        self._generation += 1
        return self._generation

    def is_current(self, token: int) -> bool:
        return token == self._generation

    def invalidate(self) -> None:
        self._generation += 1
