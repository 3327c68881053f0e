"""WSGI config: serves the REST API only (the status feed needs the ASGI app)"""
import os

from django.core.wsgi import get_wsgi_application

from backend.core.startup import enforce_environment

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'backend.config.settings.base')
enforce_environment()

application = get_wsgi_application()
