import django_filters
from django.db.models import Q

from .models import WorkOrder


class WorkOrderFilter(django_filters.FilterSet):
    """Work order list filtering"""

    search = django_filters.CharFilter(method='filter_search', label='Search')
    status = django_filters.MultipleChoiceFilter(choices=WorkOrder.STATUS_CHOICES)
    routing = django_filters.NumberFilter(field_name='routing_id', lookup_expr='exact')
    created_after = django_filters.DateFilter(field_name='created_at', lookup_expr='date__gte')
    created_before = django_filters.DateFilter(field_name='created_at', lookup_expr='date__lte')

    class Meta:
        model = WorkOrder
        fields = ['search', 'status', 'routing', 'created_after', 'created_before']

    def filter_search(self, queryset, name, value):
        """Match order number, item name or routing name; every word must match"""
        if not value:
            return queryset
        for word in value.split():
            queryset = queryset.filter(
                Q(order_number__icontains=word)
                | Q(item_name__icontains=word)
                | Q(routing__name__icontains=word)
            )
        return queryset
