"""
PostgreSQL settings.

Defaults to unix socket with user auth.
"""

import getpass

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.postgresql',
        'NAME': 'guildgate',
        'USER': getpass.getuser(),
        'PASSWORD': '',
        'HOST': '',
        'PORT': '',
        'TEST': {'NAME': 'guildgate-test'},
        'ATOMIC_REQUESTS': True,
    }
}
