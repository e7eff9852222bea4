"""
Core models for Inspecta.
Provides BaseModel with timestamp fields.
"""
from django.db import models


class BaseModel(models.Model):
    """
    Abstract base model with creation and update timestamps.

    Primary keys are left to subclasses: actors use UUIDs, organizations use
    integer ids shared with the inspection collaborators.
    """

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when the record was created"
    )

    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="Timestamp when the record was last updated"
    )

    class Meta:
        abstract = True
        ordering = ['-created_at']
