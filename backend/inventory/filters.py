import django_filters
from django.db.models import F, Q
from .models import InventoryItem


class InventoryItemFilter(django_filters.FilterSet):
    search = django_filters.CharFilter(method='filter_search', label='Search')
    category = django_filters.CharFilter(field_name='category', lookup_expr='iexact')
    active = django_filters.BooleanFilter(field_name='is_active')
    low_stock = django_filters.BooleanFilter(method='filter_low_stock', label='Low Stock')

    class Meta:
        model = InventoryItem
        fields = ['search', 'category', 'active', 'low_stock']

    def filter_search(self, queryset, name, value):
        search = (value or '').strip()
        if not search:
            return queryset
        return queryset.filter(Q(name__icontains=search) | Q(sku__icontains=search))

    def filter_low_stock(self, queryset, name, value):
        if value is None:
            return queryset
        condition = Q(quantity__lte=F('min_stock_level'))
        return queryset.filter(condition) if value else queryset.exclude(condition)
