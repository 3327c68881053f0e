import django_filters
from django.db.models import Q
from .models import Customer, Device


class CustomerFilter(django_filters.FilterSet):
    search = django_filters.CharFilter(method='filter_search', label='Search')

    class Meta:
        model = Customer
        fields = ['search']

    def filter_search(self, queryset, name, value):
        """Name, phone or email contains the search text"""
        search = (value or '').strip()
        if not search:
            return queryset
        return queryset.filter(
            Q(name__icontains=search) | Q(phone__icontains=search) | Q(email__icontains=search)
        )


class DeviceFilter(django_filters.FilterSet):
    search = django_filters.CharFilter(method='filter_search', label='Search')
    status = django_filters.ChoiceFilter(choices=Device.STATUS_CHOICES)
    priority = django_filters.ChoiceFilter(choices=Device.PRIORITY_CHOICES)
    customer = django_filters.NumberFilter(field_name='customer_id', lookup_expr='exact')
    technician = django_filters.NumberFilter(field_name='technician_id', lookup_expr='exact')

    class Meta:
        model = Device
        fields = ['search', 'status', 'priority', 'customer', 'technician']

    def filter_search(self, queryset, name, value):
        """Receipt number, brand, model, serial number or customer name/phone"""
        search = (value or '').strip()
        if not search:
            return queryset
        return queryset.filter(
            Q(receipt_number__icontains=search)
            | Q(brand__icontains=search)
            | Q(model__icontains=search)
            | Q(serial_number__icontains=search)
            | Q(customer__name__icontains=search)
            | Q(customer__phone__icontains=search)
        )
