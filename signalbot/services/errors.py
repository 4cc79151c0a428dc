"""
Exception taxonomy shared by the services and mapped to HTTP in main.py.
"""


class SignalBotError(Exception):
    """Base class for all service-level failures."""


class EntityNotFound(SignalBotError):
    """A user, signal, strategy or settings row does not exist."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class InvalidInput(SignalBotError, ValueError):
    """Input rejected before any state was touched."""


class SignalAlreadySettled(SignalBotError):
    """Completed signals are terminal and cannot be settled again."""

    def __init__(self, signal_id: str):
        self.signal_id = signal_id
        super().__init__(f"Signal {signal_id} is already completed")


class MarketDataUnavailable(SignalBotError):
    """The price feed could not deliver data after all retries."""
