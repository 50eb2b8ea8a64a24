# Copyright © The Guildgate Developers
# See the AUTHORS file at the top-level directory of this distribution
#
# This file is part of Guildgate. It is subject to the license terms
# in the LICENSE file found in the top-level directory of this
# distribution. No part of Guildgate, including this file, may be copied,
# modified, propagated, or distributed except according to the terms
# contained in the LICENSE file.

"""Default settings, suitable for production once a local.py is provided."""

import os
from typing import Any

# Replaced by read_secret() in local settings. The guildgate checks refuse
# this key when DEBUG is False
SECRET_KEY = "default: not a secret, replace me in local.py"

DEBUG = False

ALLOWED_HOSTS: list[str] = []

INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "guildgate.db",
    "guildgate.server",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "guildgate.server.signon.middleware.SignonMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "guildgate.project.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "guildgate.project.wsgi.application"

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": "guildgate",
        "ATOMIC_REQUESTS": True,
    }
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

AUTH_USER_MODEL = "db.User"

AUTHENTICATION_BACKENDS = [
    "django.contrib.auth.backends.ModelBackend",
    "guildgate.server.signon.auth.SignonAuthBackend",
]

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

SESSION_COOKIE_SECURE = True
CSRF_COOKIE_SECURE = True

LOGOUT_REDIRECT_URL = "/"

#: Level of the messages printed on the console
GUILDGATE_LOG_LEVEL = os.environ.get("GUILDGATE_LOG_LEVEL", "INFO").upper()

LOGGING: dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{asctime} {levelname} {name} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
            "level": GUILDGATE_LOG_LEVEL,
        },
    },
    "loggers": {
        "guildgate": {
            "handlers": ["console"],
            "level": GUILDGATE_LOG_LEVEL,
            "propagate": False,
        },
        "django": {
            "handlers": ["console"],
            "level": "WARNING",
        },
    },
}

# Signon configuration: see guildgate.server.signon.providers
SIGNON_PROVIDERS: list[Any] = []

#: Dotted path to a guildgate.server.signon.signon.Signon subclass
SIGNON_CLASS: str | None = None

#: Account names that cannot be created, compared case-insensitively
SIGNON_RESERVED_USERNAMES = [
    "Admin",
    "Administrator",
    "Root",
    "System",
    "Guildgate",
]

#: Where to go after a successful login, if no ?next was given
SIGNON_DEFAULT_REDIRECT = "/"

#: Maximum number of concurrent requests in membership audits
SIGNON_AUDIT_MAX_WORKERS = 8
