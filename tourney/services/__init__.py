"""
Services package for the tournament core.

Session-scoped services that answer questions for the operations layer.
"""

from .base import BaseService
from .authorization import AuthorizationService

__all__ = ['BaseService', 'AuthorizationService']
