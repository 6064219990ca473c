"""Custom user model for the VHC workflow project."""

from django.contrib.auth.models import AbstractUser
from django.db import models


class CustomUser(AbstractUser):
    """Workshop staff member: advisor, technician or admin."""

    display_name = models.CharField(
        max_length=255,
        blank=True,
        help_text="Human-readable name shown in job history and timelines",
    )
    phone_number = models.CharField(
        max_length=20,
        blank=True,
        help_text="Direct line used by advisors to reach the technician",
    )
    email = models.EmailField("email address", blank=False, unique=True)
    organization = models.ForeignKey(
        "inspections.Organization",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="staff",
        help_text="Jobs outside this organization are not visible",
    )

    class Meta:
        verbose_name = "user"
        verbose_name_plural = "users"

    def get_display_name(self):
        """Return display_name if set, otherwise full name or username."""
        if self.display_name:
            return self.display_name
        full = self.get_full_name()
        return full if full else self.username

    def __str__(self):
        return self.get_display_name()
