from django.contrib.auth.models import AbstractUser
from django.db import models

from .roles import ADMIN, ROLE_CHOICES, SALES, permissions_for_role


class User(AbstractUser):
    """Shop staff account with a role and an optional home location"""
    role = models.CharField(max_length=30, choices=ROLE_CHOICES, default=SALES)
    location = models.ForeignKey(
        'locations.Location', on_delete=models.SET_NULL, null=True, blank=True, related_name='users'
    )
    phone = models.CharField(max_length=20, blank=True, null=True)
    # Extra permission strings granted on top of the role
    permissions = models.JSONField(default=list, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'users'
        indexes = [
            models.Index(fields=['role'], name='users_role_idx'),
        ]

    @property
    def is_admin(self):
        return self.role == ADMIN

    @property
    def effective_permissions(self):
        """Role permissions plus explicit grants"""
        granted = set(permissions_for_role(self.role))
        granted.update(p for p in (self.permissions or []) if isinstance(p, str))
        return granted

    def has_app_permission(self, permission):
        return self.is_admin or permission in self.effective_permissions
