"""
RBAC API URLs.

Provides endpoints for:
- Actor profile reads, edits and deactivation
- Approval workflow
"""
from django.urls import path
from apps.rbac.views import (
    ActorDetailView,
    ActorApproveView,
    ActorRejectView,
    PendingActorsView,
)

app_name = 'rbac'

urlpatterns = [
    # Approval workflow
    path('users/pending', PendingActorsView.as_view(), name='actor-pending'),
    path('users/<uuid:actor_id>/approve', ActorApproveView.as_view(), name='actor-approve'),
    path('users/<uuid:actor_id>/reject', ActorRejectView.as_view(), name='actor-reject'),

    # Actor accounts
    path('users/<uuid:actor_id>', ActorDetailView.as_view(), name='actor-detail'),
]
