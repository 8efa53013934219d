"""
Base service class for the tournament core.

Provides async database session management for service layer lookups.
AuthorizationService builds on it so that the manager check in a tournament
decision can run inside the decision's own transaction, or in a short
session of its own when called standalone.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

class BaseService:
    """Base class for all services with async database session management."""
    
    def __init__(self, session_factory):
        """
        Initialize base service with session factory.
        
        Args:
            session_factory: Async session factory from Database class
        """
        self.session_factory = session_factory
    
    @asynccontextmanager
    async def get_session(self, session: AsyncSession = None) -> AsyncGenerator[AsyncSession, None]:
        """
        Provide a transactional scope for async database operations.
        
        A caller-supplied session is passed through untouched so lookups can
        run inside the caller's transaction.
        """
        if session is not None:
            yield session
            return
        
        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
