"""planoverride Core - Shared constants and validation.

Import specific names from submodules:
    from planoverride.core.constants import ErrorCode, Limits
    from planoverride.core.validators import ValidationError
"""

from planoverride.core import constants, validators

__all__ = [
    "constants",
    "validators",
]
