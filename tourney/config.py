import os
from datetime import timedelta
from dotenv import load_dotenv

from tourney.utils.time_parser import parse_duration

load_dotenv()

class Config:
    """Tournament core configuration settings"""
    
    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///tournament.db')
    
    # Logging settings
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
    LOG_DIR = os.getenv('LOG_DIR', 'logs')
    LOG_TO_FILE = os.getenv('LOG_TO_FILE', 'True').lower() == 'true'
    
    # Bracket settings
    BRACKET_SHUFFLE = os.getenv('BRACKET_SHUFFLE', 'True').lower() == 'true'
    BRACKET_TIME_PER_ROUND = os.getenv('BRACKET_TIME_PER_ROUND', '0')
    
    # Authorization settings
    TOURNAMENT_MANAGER_ROLES = os.getenv('TOURNAMENT_MANAGER_ROLES', 'tournament_manager,admin')
    
    # Wallet settings
    REFUND_REASON = os.getenv('REFUND_REASON', 'TOURNAMENT_REFUND')
    
    @classmethod
    def get_manager_roles(cls):
        """Get the set of role names that carry tournament manager capability"""
        return {
            role.strip().lower()
            for role in cls.TOURNAMENT_MANAGER_ROLES.split(',')
            if role.strip()
        }
    
    @classmethod
    def get_time_per_round(cls) -> timedelta:
        """Get the default gap between consecutive rounds"""
        return parse_duration(cls.BRACKET_TIME_PER_ROUND)
    
    @classmethod
    def validate(cls):
        """Validate that required configuration is present"""
        if not cls.DATABASE_URL:
            raise ValueError("DATABASE_URL is required")
        try:
            cls.get_time_per_round()
        except ValueError as e:
            raise ValueError(f"BRACKET_TIME_PER_ROUND is invalid: {e}") from e
        if not cls.get_manager_roles():
            raise ValueError("TOURNAMENT_MANAGER_ROLES must name at least one role")
