"""
Variable resolution module.
Implements lookups and template/expression rendering.
"""

from .lookups import LookupRegistry, LookupHandler, LookupScope
from .renderer import Renderer, RendererCache

__all__ = ['LookupRegistry', 'LookupHandler', 'LookupScope', 'Renderer', 'RendererCache']
