"""API routers."""

from . import billing
from . import health

__all__ = ['billing', 'health']
