"""
URL configuration for the ERP backend.

Every app mounts its routes under /api/v1/.
"""
from django.contrib import admin
from django.urls import path, include, re_path
from django.conf import settings
from django.views.static import serve

admin.site.site_header = "Production Floor Admin Panel"
admin.site.site_title = "Production Floor Admin Portal"
admin.site.index_title = "Manufacturing & Inventory Administration"

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/v1/', include('erp.core.urls')),
    path('api/v1/', include('erp.manufacturing.urls')),
    re_path(r'^media/(?P<path>.*)$', serve, {'document_root': settings.MEDIA_ROOT}),
    re_path(r'^static/(?P<path>.*)$', serve, {'document_root': settings.STATIC_ROOT}),
]
