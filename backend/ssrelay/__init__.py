"""SSActiveWear to Shopify relay"""
from .system import RelaySystem, get_system

__all__ = ['RelaySystem', 'get_system']
