import logging
import time

logger = logging.getLogger('backend.requests')


class RequestLoggingMiddleware:
    """Logs method, path, status and duration of every /api request"""

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        if not request.path.startswith('/api'):
            return self.get_response(request)

        started = time.perf_counter()
        response = self.get_response(request)
        duration_ms = (time.perf_counter() - started) * 1000
        message = f"{request.method} {request.path} {response.status_code} in {duration_ms:.0f}ms"
        if response.status_code >= 500:
            logger.error(message)
        elif response.status_code >= 400:
            logger.warning(message)
        else:
            logger.info(message)
        return response
