from typing import Optional


class CopyTraderError(Exception):
    """Base class for all bot errors"""
    pass


class ConfigError(CopyTraderError):
    """Raised when required startup configuration is missing or invalid"""
    pass


# Classification

class ClassificationError(CopyTraderError):
    """A transaction could not be turned into a mirrorable swap"""
    pass


class NoDexError(ClassificationError):
    pass


class PoolNotFoundError(ClassificationError):
    pass


class InsufficientTransferData(ClassificationError):
    pass


class CircularSwapError(ClassificationError):
    pass


class UnknownDirectionError(ClassificationError):
    pass


class DecodeError(CopyTraderError):
    """Raised when account data does not match the expected layout"""

    def __init__(self,
                 message: str,
                 address: Optional[str] = None,
                 data_length: Optional[int] = None,
                 data_prefix: Optional[str] = None):
        super().__init__(message)
        self.address = address
        self.data_length = data_length
        self.data_prefix = data_prefix


# Positions

class PositionError(CopyTraderError):
    def __init__(self, mint: str, message: str = ""):
        super().__init__(message or f"{self.__class__.__name__}: {mint}")
        self.mint = mint


class AlreadyOpenError(PositionError):
    pass


class NotOpenError(PositionError):
    pass


class NotClosingError(PositionError):
    pass


class ExecutionError(CopyTraderError):
    """Raised when a swap could not be built, submitted or confirmed"""
    pass
