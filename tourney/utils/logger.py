"""
Logging setup shared by every tourney module.

Each module calls setup_logger(__name__) once at import. Bracket generation,
progression and match actions log at INFO, version conflicts and skipped
refunds at WARNING, and single state transitions at DEBUG.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path

from tourney.config import Config

def setup_logger(name: str) -> logging.Logger:
    """
    Return the named logger with console output and, unless
    Config.LOG_TO_FILE is off, a daily tourney_YYYYMMDD.log under
    Config.LOG_DIR. Handlers are only attached on the first call per name.
    """
    
    logger = logging.getLogger(name)
    
    if logger.handlers:
        return logger
    
    # Set log level based on debug setting
    log_level = logging.DEBUG if Config.DEBUG else logging.INFO
    logger.setLevel(log_level)
    
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    
    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)
    
    if not Config.LOG_TO_FILE:
        return logger
    
    # File handler
    log_dir = Path(Config.LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)
    
    file_handler = logging.FileHandler(
        log_dir / f'tourney_{datetime.now().strftime("%Y%m%d")}.log',
        encoding='utf-8'
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)
    
    return logger
