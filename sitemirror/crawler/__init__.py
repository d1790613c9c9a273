"""
Crawl engine components.
"""

from .urls import InvalidURLError, parse_seed
from .registry import Resource, ResourceRegistry, ResourceState
from .fetcher import WebFetcher
from .parser import LinkExtractor, ContentKind

__all__ = [
    'InvalidURLError', 'parse_seed',
    'Resource', 'ResourceRegistry', 'ResourceState',
    'WebFetcher',
    'LinkExtractor', 'ContentKind',
]
