"""
Utility functions for the FormCoach project.
"""

from .io_utils import (
    load_config,
    load_optional_config,
    save_report,
)

__all__ = [
    'load_config',
    'load_optional_config',
    'save_report',
]
