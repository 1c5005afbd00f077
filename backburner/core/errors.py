from __future__ import annotations


class PriceFeedError(RuntimeError):
    """A price lookup failed in a way worth retrying on the next poll."""

    def __init__(self, symbol: str, message: str = "price unavailable") -> None:
        super().__init__(f"{symbol}: {message}")
        self.symbol = symbol
