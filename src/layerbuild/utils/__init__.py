"""
layerbuild utils

- logger: Logging setup, step-tagged records
- digest: Content digests for layers and directory trees

Usage:
    from layerbuild.utils import setup_logger, sha256_of
"""

from .logger import setup_logger, parse_module_levels, log_step, current_step
from .digest import sha256_of, scan_tree, tree_digest, diff_manifests, layer_digest

__all__ = [
    'setup_logger',
    'parse_module_levels',
    'log_step',
    'current_step',
    'sha256_of',
    'scan_tree',
    'tree_digest',
    'diff_manifests',
    'layer_digest',
]
