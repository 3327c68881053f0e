"""
URL configuration.

Every API lives under /api/; the status feed WebSocket is routed in asgi.py.
"""
from django.contrib import admin
from django.urls import path, include

admin.site.site_header = "Repair Shop Admin Panel"
admin.site.site_title = "Repair Shop Admin Portal"
admin.site.index_title = "Repair Shop Administration"

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/', include('backend.core.urls')),
    path('api/', include('backend.locations.urls')),
    path('api/', include('backend.notifications.urls')),
    path('api/', include('backend.repairs.urls')),
    path('api/', include('backend.inventory.urls')),
    path('api/', include('backend.monitoring.urls')),
]
