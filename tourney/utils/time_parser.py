"""
Duration and timestamp utilities for bracket scheduling.

Handles conversion between duration strings and timedeltas for the gap
between consecutive bracket rounds. All timestamps are UTC-aware.
"""

from datetime import datetime, timedelta, timezone
from typing import Union
import math


def utcnow() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC (naive values are taken as UTC)"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_time_to_seconds(time_str: str) -> float:
    """
    Parse a duration string into total seconds.
    
    Supported formats:
    - HH:MM:SS.ms (e.g., 1:23:45.678)
    - MM:SS.ms (e.g., 8:30.5)
    - MM:SS (e.g., 8:00)
    - SS.ms (e.g., 45.2)
    - SS (e.g., 45)
    
    Args:
        time_str: Duration string to parse
        
    Returns:
        Total seconds as float
        
    Raises:
        ValueError: If the format is invalid
    """
    time_str = time_str.strip()
    
    if not time_str:
        raise ValueError("Empty duration")
    
    # Check for negative durations before parsing
    if time_str.startswith('-'):
        raise ValueError("Negative durations are not allowed")
    
    # Handle plain seconds (no colons)
    if ':' not in time_str:
        try:
            seconds = float(time_str)
        except ValueError:
            raise ValueError(f"Invalid duration format: {time_str}")
        if math.isnan(seconds) or math.isinf(seconds):
            raise ValueError(f"Invalid duration value: {time_str}")
        return seconds
    
    parts = time_str.split(':')
    if len(parts) > 3:
        raise ValueError("Invalid duration format. Use HH:MM:SS.ms, MM:SS.ms, or SS")
    
    try:
        if len(parts) == 2:  # MM:SS or MM:SS.ms
            hours = 0
            minutes = int(parts[0])
            seconds = float(parts[1])
        else:  # HH:MM:SS or HH:MM:SS.ms
            hours = int(parts[0])
            minutes = int(parts[1])
            seconds = float(parts[2])
    except (ValueError, TypeError) as e:
        raise ValueError(f"Invalid duration format: {time_str}") from e
    
    if hours < 0 or minutes < 0 or seconds < 0 or seconds >= 60:
        raise ValueError(f"Invalid duration components: {time_str}")
    if len(parts) == 3 and minutes >= 60:
        raise ValueError(f"Invalid duration components: {time_str}")
    
    total = hours * 3600 + minutes * 60 + seconds
    if math.isnan(total) or math.isinf(total):
        raise ValueError("Invalid duration value")
    # Round to avoid floating point edge cases (e.g., 59.999 -> 60)
    return round(total, 3)


def parse_duration(value: Union[str, int, float, timedelta, None]) -> timedelta:
    """
    Coerce a configured duration into a timedelta.
    
    Numbers are read as seconds, strings go through parse_time_to_seconds,
    None means no gap.
    """
    if value is None:
        return timedelta(0)
    if isinstance(value, timedelta):
        if value < timedelta(0):
            raise ValueError("Negative durations are not allowed")
        return value
    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError("Negative durations are not allowed")
        return timedelta(seconds=value)
    return timedelta(seconds=parse_time_to_seconds(str(value)))


def format_duration(duration: timedelta) -> str:
    """
    Format a timedelta into a human-readable duration string.
    
    Args:
        duration: Duration to format
        
    Returns:
        Formatted duration string (e.g., "8:30" or "1:23:45")
    """
    seconds = duration.total_seconds()
    if seconds < 0:
        raise ValueError("Negative durations are not allowed")
    
    total_seconds = int(seconds)
    hours, remainder = divmod(total_seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"
