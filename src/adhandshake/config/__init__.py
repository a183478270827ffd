"""
adhandshake Configuration Module

Components:
- validator: Structural checks on proposed configurations
- schema: Request body decoding
- settings: Process-level handshake settings
"""

from adhandshake.config.validator import ConfigValidator
from adhandshake.config.schema import decode_test_and_apply_input
from adhandshake.config.settings import HandshakeSettings

__all__ = [
    "ConfigValidator",
    "decode_test_and_apply_input",
    "HandshakeSettings",
]
