from django.urls import path
from .views import (
    CustomTokenObtainPairView, CustomTokenRefreshView, user_me, access_check,
    user_list_create, user_detail,
)

urlpatterns = [
    # Auth endpoints
    path('auth/login/', CustomTokenObtainPairView.as_view(), name='token_obtain_pair'),
    path('auth/refresh/', CustomTokenRefreshView.as_view(), name='token_refresh'),
    path('auth/me/', user_me, name='user-me'),
    path('auth/access-check/', access_check, name='access-check'),

    # User endpoints
    path('users/', user_list_create, name='user-list-create'),
    path('users/<int:pk>/', user_detail, name='user-detail'),
]
