"""
Authorization service for the tournament core.

Resolves whether a user holds tournament manager capability, based on
the player's role and the roles listed in Config.TOURNAMENT_MANAGER_ROLES.
"""

import logging
from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tourney.config import Config
from tourney.database.models import Player
from tourney.services.base import BaseService

logger = logging.getLogger(__name__)

class AuthorizationService(BaseService):
    """Role-based capability checks."""
    
    async def get_player(self, user_id: str, session: Optional[AsyncSession] = None) -> Optional[Player]:
        async with self.get_session(session) as s:
            result = await s.execute(select(Player).where(Player.id == user_id))
            return result.scalar_one_or_none()
    
    async def has_manager_capability(self, user_id: str, session: Optional[AsyncSession] = None) -> bool:
        """
        Check whether a user may make tournament-level decisions.
        
        Args:
            user_id: Player ID of the acting user
            session: Optional session for transaction participation
            
        Returns:
            True if the player exists and holds a manager role
        """
        if not user_id:
            return False
        
        player = await self.get_player(user_id, session=session)
        if player is None:
            logger.warning(f"Manager capability check for unknown user {user_id}")
            return False
        
        return player.has_role(*Config.get_manager_roles())
