"""
Management command to run the ASGI server (HTTP API and the status feed)
Usage: python manage.py serve [--host 0.0.0.0] [--port 5000] [--reload]
"""
import uvicorn
from django.conf import settings
from django.core.management.base import BaseCommand


class Command(BaseCommand):
    help = 'Run the API and the live status feed on one port with uvicorn'

    def add_arguments(self, parser):
        parser.add_argument('--host', default='0.0.0.0', help='Interface to bind (default 0.0.0.0)')
        parser.add_argument('--port', type=int, default=None, help='Port to bind (default: PORT setting)')
        parser.add_argument('--reload', action='store_true', help='Restart on code changes')
        parser.add_argument('--workers', type=int, default=1, help='Number of worker processes')

    def handle(self, *args, **options):
        port = options['port'] or settings.PORT
        self.stdout.write(self.style.SUCCESS(
            f"Serving on http://{options['host']}:{port} (status feed at ws://{options['host']}:{port}/)"
        ))
        uvicorn.run(
            'backend.config.asgi:application',
            host=options['host'],
            port=port,
            reload=options['reload'],
            workers=None if options['reload'] else options['workers'],
            lifespan='off',
            log_level=settings.LOG_LEVEL.lower(),
        )
