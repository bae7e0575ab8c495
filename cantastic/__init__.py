"""
CANtastic - CAN bus setup and troubleshooting for Klipper hosts.

Usage:
    from cantastic import detect, ConfigurationScheme

    scheme = detect()
    if scheme == ConfigurationScheme.MULTIPLE:
        print("More than one CAN configuration method is installed")
"""

__version__ = "2.0.1"

from cantastic.schemes import (
    ConfigurationScheme,
    DesiredParameters,
    PersistedParameters,
)
from cantastic.detect import detect, extract_parameters, get_status
from cantastic.configure import apply_configuration, delete_configuration, restart_canbus

__all__ = [
    "__version__",
    "ConfigurationScheme",
    "DesiredParameters",
    "PersistedParameters",
    "detect",
    "extract_parameters",
    "get_status",
    "apply_configuration",
    "delete_configuration",
    "restart_canbus",
]
