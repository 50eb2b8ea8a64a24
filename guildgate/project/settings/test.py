"""Appropriate settings to run the test suite."""

from guildgate.project.settings.defaults import *  # noqa: F401, F403

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

# Don't use a slow password hasher to run tests (speed gain)
PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']

TEST_NON_SERIALIZED_APPS = ['django.contrib.contenttypes']

# Some checks need to know if we are running tests or not
# Test run with DEBUG=False but it is allowed, for example, to use
# the default SECRET_KEY during tests
TEST_MODE = True

ALLOWED_HOSTS = ["testserver", "guildgate.example.org"]

SESSION_COOKIE_SECURE = False
CSRF_COOKIE_SECURE = False
