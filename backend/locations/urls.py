from django.urls import path
from .views import (
    location_list_create, active_location_list, location_detail, location_selection
)

urlpatterns = [
    path('locations/', location_list_create, name='location-list-create'),
    path('locations/active/', active_location_list, name='location-active-list'),
    path('locations/selection/', location_selection, name='location-selection'),
    path('locations/<int:pk>/', location_detail, name='location-detail'),
]
