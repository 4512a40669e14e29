from papertrader.persistence.state import EngineState, read_state, write_state

__all__ = ["EngineState", "read_state", "write_state"]
