class SimulationError(Exception):
    """Base class for errors raised by the simulation engine."""


class SessionNotFound(SimulationError, KeyError):
    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id

    def __str__(self) -> str:
        # KeyError would otherwise quote the message
        return str(self.args[0])


class InvalidStateTransition(SimulationError):
    def __init__(self, session_id: str, current: str, operation: str):
        super().__init__(f"Cannot {operation} session {session_id} in {current} state")
        self.session_id = session_id
        self.current = current
        self.operation = operation


class NoHistoricalData(SimulationError):
    def __init__(self, symbol: str):
        super().__init__(f"No historical data available for {symbol}")
        self.symbol = symbol


class InvalidSessionConfig(SimulationError, ValueError):
    pass


class InsufficientCash(SimulationError):
    """Trade-level rejection: a BUY costs more than the available cash."""
    reason = "insufficient cash"


class InsufficientShares(SimulationError):
    """Trade-level rejection: a SELL asks for more shares than are held."""
    reason = "insufficient shares"
