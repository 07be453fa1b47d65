"""Contract completion: status aggregation and final package assembly."""

from .aggregator import CompletionAggregator
from .assembler import PackageAssembler, package_path

__all__ = [
    'CompletionAggregator',
    'PackageAssembler',
    'package_path',
]
