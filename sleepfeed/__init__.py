"""
sleepfeed - social sleep tracking API

- Sleep sessions: clock in / clock out, one active session per user
- Follow graph with Redis-cached lists and counts
- Social feed of followed users' completed sessions
"""

from sleepfeed.config import Settings, get_settings

__all__ = [
    'Settings',
    'get_settings',
]

__version__ = '0.1.0'
