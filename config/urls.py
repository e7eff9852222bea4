"""
URL configuration for Inspecta.
"""
from django.urls import path, include
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView

urlpatterns = [
    # API Documentation
    path('schema/', SpectacularAPIView.as_view(), name='schema'),
    path('schema/swagger/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),

    # Actor administration (profile edits, approval workflow)
    path('v1/', include('apps.rbac.urls')),

    # Security management: integrity check, auto-fix, audit trail, system health
    path('v1/security/', include('apps.security.urls')),
]
