"""Abstract price oracle interface.

Defines the contract for all price sources. Intake and settlement code
depends only on this interface, keeping exchange-specific details isolated
in the concrete implementations.
"""

from abc import ABC, abstractmethod
from decimal import Decimal

from tradebox.models import PriceQuote


class PriceOracle(ABC):
    """Abstract base class for price sources."""

    @abstractmethod
    async def connect(self) -> None:
        """Initialize connection and load markets."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Clean up resources."""
        ...

    @abstractmethod
    async def get_validated_price(self, asset: str) -> PriceQuote:
        """Return a fresh, positive price with source and observation time.

        Used at trade open. Never falls back to a cached or default price.

        Raises:
            PriceUnavailableError: If no fresh price can be produced.
        """
        ...

    @abstractmethod
    async def get_current_price(self, asset: str) -> Decimal:
        """Return the current price for settlement.

        Raises:
            PriceUnavailableError: If the price cannot be fetched.
        """
        ...
