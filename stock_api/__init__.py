"""
stock_api -- FastAPI HTTP surface over the stock kernel.

Architecture position:
    Outer layer.  May import from ``stock_kernel`` and ``stock_config``;
    nothing in the kernel imports from here.
"""

from stock_api.app import create_app

__all__ = ["create_app"]
