"""
Security management URLs.
"""
from django.urls import path
from apps.security.views import (
    IntegrityCheckView,
    AutoFixView,
    AuditLogsView,
    SystemHealthView,
    AuditTrailListView,
    AuditTrailDetailView,
    AuditTrailStatsView,
)

app_name = 'security'

urlpatterns = [
    path('integrity-check', IntegrityCheckView.as_view(), name='integrity-check'),
    path('auto-fix', AutoFixView.as_view(), name='auto-fix'),
    path('audit-logs', AuditLogsView.as_view(), name='audit-logs'),
    path('system-health', SystemHealthView.as_view(), name='system-health'),

    # Tenant-scoped audit trail browsing
    path('audit/logs', AuditTrailListView.as_view(), name='audit-trail-list'),
    path('audit/logs/<int:event_id>', AuditTrailDetailView.as_view(), name='audit-trail-detail'),
    path('audit/stats', AuditTrailStatsView.as_view(), name='audit-trail-stats'),
]
