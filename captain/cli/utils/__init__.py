"""CLI utility functions"""

from .output import (
    console,
    format_deploy_result,
    format_error,
    format_records_table,
    format_program_list,
    print_error,
    print_warning,
    print_success,
)
from .progress import buffer_progress, progress_callback

__all__ = [
    # Output utilities
    'console',
    'format_deploy_result',
    'format_error',
    'format_records_table',
    'format_program_list',
    'print_error',
    'print_warning',
    'print_success',

    # Progress utilities
    'buffer_progress',
    'progress_callback',
]
