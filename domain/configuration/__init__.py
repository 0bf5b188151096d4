"""Runtime configuration domain exports."""
from .entity import ConfigurationEntry, ConfigDefault, ValueType, DEFAULTS, cast_value, serialize_value
from .repository import ConfigurationRepository

__all__ = [
    "ConfigurationEntry",
    "ConfigDefault",
    "ValueType",
    "DEFAULTS",
    "cast_value",
    "serialize_value",
    "ConfigurationRepository",
]
