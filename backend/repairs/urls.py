from django.urls import path
from . import views

urlpatterns = [
    path('customers/', views.customer_list_create, name='customer-list-create'),
    path('customers/<int:pk>/', views.customer_detail, name='customer-detail'),
    path('devices/', views.device_list_create, name='device-list-create'),
    path('devices/<int:pk>/', views.device_detail, name='device-detail'),
    path('devices/<int:pk>/status/', views.device_status_update, name='device-status-update'),
    path('track/<str:receipt_number>/', views.track_device, name='device-track'),
    path('feedback/', views.feedback_list, name='feedback-list'),
    path('feedback/submit/', views.feedback_create, name='feedback-create'),
]
