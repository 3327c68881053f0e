"""
System status snapshot.

SystemMonitor.snapshot() is what the status feed pushes and the health
endpoint returns:

    {
        "performance": {"cpu", "memory", "disk", "uptime"},
        "database": {"status", "responseTime", "connections"},
        "services": [{"name", "status"}],
        "errorStats": {"totalErrors", "errorsLast24h", "criticalErrors"},
        "timestamp": ISO-8601,
    }

Every probe reports its own failure in the snapshot instead of raising.
"""
import logging
import os
import time

import psutil
from django.conf import settings
from django.core.cache import cache
from django.db import DatabaseError, connection
from django.utils import timezone

from .connections import registry
from .errors import error_stats

logger = logging.getLogger('backend.monitoring')

RUNNING = 'running'
STOPPED = 'stopped'
ERROR = 'error'


class SystemMonitor:

    def __init__(self, errors=None, connections=None, disk_path=None):
        self.errors = errors or error_stats
        self.connections = connections or registry
        self.disk_path = disk_path or str(settings.BASE_DIR)
        # Prime psutil so the first real reading is a delta, not 0.0
        psutil.cpu_percent(interval=None)

    def performance(self):
        try:
            return {
                'cpu': psutil.cpu_percent(interval=None),
                'memory': psutil.virtual_memory().percent,
                'disk': psutil.disk_usage(self.disk_path).percent,
                'uptime': int(time.time() - psutil.boot_time()),
            }
        except (psutil.Error, OSError) as e:
            logger.warning(f"Could not read system metrics: {e}")
            return {'cpu': 0, 'memory': 0, 'disk': 0, 'uptime': 0}

    def database_health(self):
        """Round trip of SELECT 1, in milliseconds"""
        started = time.perf_counter()
        try:
            with connection.cursor() as cursor:
                cursor.execute('SELECT 1')
                cursor.fetchone()
                response_time = round((time.perf_counter() - started) * 1000, 2)
                connections = 1
                if connection.vendor == 'postgresql':
                    cursor.execute('SELECT count(*) FROM pg_stat_activity WHERE datname = current_database()')
                    connections = cursor.fetchone()[0]
        except DatabaseError as e:
            logger.error(f"Database health check failed: {e}")
            return {'status': ERROR, 'responseTime': 0, 'connections': 0}
        return {'status': 'healthy', 'responseTime': response_time, 'connections': connections}

    def cache_status(self):
        try:
            cache.set('monitoring:ping', 'pong', 5)
            return RUNNING if cache.get('monitoring:ping') == 'pong' else ERROR
        except Exception as e:  # redis client errors are not a common base class
            logger.warning(f"Cache health check failed: {e}")
            return ERROR

    def services(self, database=None):
        database = database or self.database_health()
        return [
            {'name': 'API Server', 'status': RUNNING},
            {'name': 'Database', 'status': RUNNING if database['status'] == 'healthy' else ERROR},
            {'name': 'Cache', 'status': self.cache_status()},
            {'name': 'Email', 'status': RUNNING if getattr(settings, 'EMAIL_HOST', '') else STOPPED},
            {'name': 'Status Feed', 'status': RUNNING if self.connections.connection_count() else STOPPED},
        ]

    def snapshot(self):
        database = self.database_health()
        return {
            'performance': self.performance(),
            'database': database,
            'services': self.services(database),
            'errorStats': self.errors.snapshot(),
            'timestamp': timezone.now().isoformat(),
            'pid': os.getpid(),
        }
