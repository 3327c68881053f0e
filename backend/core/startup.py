"""
Startup environment validation.

Runs before Django is configured (manage.py, asgi.py, wsgi.py) so a missing
secret or database URL stops the process with a readable message instead of
failing on the first request.
"""
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger('backend.startup')

REQUIRED_VARIABLES = ('DATABASE_URL', 'JWT_SECRET')
RECOMMENDED_VARIABLES = ('SESSION_SECRET', 'NODE_ENV', 'PORT')
INSECURE_SECRETS = {'dev-secret-change-me', 'replace-me-in-production', 'changeme'}
MIN_SECRET_LENGTH = 32

ENV_FILE = Path(__file__).resolve().parent.parent.parent / '.env'


class StartupValidationError(Exception):
    """Raised when a required environment variable is missing or unusable."""


def validate_environment(environ=None):
    """
    Validate the process environment.

    Returns a list of warnings for recommended variables that are missing.
    Raises StartupValidationError listing every fatal problem at once.
    """
    if environ is None:
        environ = os.environ

    problems = []
    for name in REQUIRED_VARIABLES:
        if not (environ.get(name) or '').strip():
            problems.append(f'{name} environment variable must be set')

    jwt_secret = (environ.get('JWT_SECRET') or '').strip()
    if jwt_secret and jwt_secret in INSECURE_SECRETS:
        problems.append('JWT_SECRET is set to a placeholder value; use a secure random string')

    if problems:
        raise StartupValidationError('; '.join(problems))

    warnings = []
    for name in RECOMMENDED_VARIABLES:
        if not environ.get(name):
            warnings.append(f'{name} is not set, using default')
    if len(jwt_secret) < MIN_SECRET_LENGTH:
        warnings.append(f'JWT_SECRET is shorter than {MIN_SECRET_LENGTH} characters')

    port = environ.get('PORT')
    if port and not port.isdigit():
        raise StartupValidationError(f'PORT must be a number, got {port!r}')

    return warnings


def enforce_environment(environ=None):
    """Validate the environment and exit with status 1 on fatal problems."""
    load_dotenv(ENV_FILE)
    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO, format='%(levelname)s %(name)s: %(message)s')

    try:
        warnings = validate_environment(environ)
    except StartupValidationError as e:
        logger.critical(f'Startup blocked: {e}')
        sys.exit(1)

    for warning in warnings:
        logger.warning(warning)
