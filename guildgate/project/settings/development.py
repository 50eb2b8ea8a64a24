"""
Appropriate settings to run during development.

Use it with DJANGO_SETTINGS_MODULE=guildgate.project.settings.development.
"""

from guildgate.project.settings.defaults import *  # noqa: F401, F403

# Must come after defaults, to override their DATABASES
from guildgate.project.settings.db_postgresql import DATABASES  # noqa: E402

__all__ = [
    'ALLOWED_HOSTS',
    'CSRF_COOKIE_SECURE',
    'DATABASES',
    'DEBUG',
    'GUILDGATE_LOG_LEVEL',
    'SESSION_COOKIE_SECURE',
]

DEBUG = True

ALLOWED_HOSTS = ['localhost', '127.0.0.1']

# Development runs over plain http
SESSION_COOKIE_SECURE = False
CSRF_COOKIE_SECURE = False

GUILDGATE_LOG_LEVEL = "DEBUG"
