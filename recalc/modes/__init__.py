"""Recalculation modes - pre-composed selections feeding the same batch runner."""
from .filtered import recalculate_filtered_mode, print_report
from .single import recalculate_single_mode
from .defaults import initialize_defaults_mode

__all__ = [
    'recalculate_filtered_mode',
    'recalculate_single_mode',
    'initialize_defaults_mode',
    'print_report',
]
