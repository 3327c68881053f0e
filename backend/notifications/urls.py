from django.urls import path
from .views import (
    notification_list, unread_count, mark_read, mark_all_read, archive,
    notification_type_list, preference_list, preference_update, send_notification,
)

urlpatterns = [
    path('notifications/', notification_list, name='notification-list'),
    path('notifications/unread-count/', unread_count, name='notification-unread-count'),
    path('notifications/mark-all-read/', mark_all_read, name='notification-mark-all-read'),
    path('notifications/types/', notification_type_list, name='notification-type-list'),
    path('notifications/preferences/', preference_list, name='notification-preference-list'),
    path('notifications/preferences/<int:type_id>/', preference_update, name='notification-preference-update'),
    path('notifications/send/', send_notification, name='notification-send'),
    path('notifications/<uuid:pk>/read/', mark_read, name='notification-mark-read'),
    path('notifications/<uuid:pk>/archive/', archive, name='notification-archive'),
]
