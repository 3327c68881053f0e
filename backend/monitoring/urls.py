from django.urls import path
from . import views

urlpatterns = [
    path('system/health/', views.system_health, name='system-health'),
]
