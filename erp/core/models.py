from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """Extended user model; factory workers are the operators on stage forms"""
    ROLE_CHOICES = [
        ('ADMIN', 'Administrator'),
        ('MANAGER', 'Production Manager'),
        ('FACTORY_WORKER', 'Factory Worker'),
        ('VIEWER', 'Viewer'),
    ]

    phone = models.CharField(max_length=20, blank=True, null=True)
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default='FACTORY_WORKER')
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    @property
    def display_name(self):
        full_name = self.get_full_name()
        return full_name or self.username

    @property
    def is_admin(self):
        return self.is_superuser or self.is_staff or self.role == 'ADMIN'

    @property
    def can_execute_stages(self):
        # Managers and admins may record a stage on an operator's behalf
        return self.is_admin or self.role in ('MANAGER', 'FACTORY_WORKER')

    @property
    def can_access_costs(self):
        return self.is_admin or self.role == 'MANAGER'

    class Meta:
        db_table = 'users'


class AuditLog(models.Model):
    """Audit log for critical operations"""
    ACTION_CHOICES = [
        ('create', 'Create'),
        ('update', 'Update'),
        ('delete', 'Delete'),
        ('view', 'View'),
        ('stage_submit', 'Production Stage Submitted'),
        ('work_order_complete', 'Work Order Completed'),
        ('equipment_hours', 'Equipment Hours Updated'),
    ]

    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, related_name='audit_logs')
    action = models.CharField(max_length=50, choices=ACTION_CHOICES)
    model_name = models.CharField(max_length=100)
    object_id = models.CharField(max_length=100)
    object_name = models.CharField(max_length=255, blank=True, null=True, help_text="Human-readable name of the object (e.g., work order number)")
    object_reference = models.CharField(max_length=255, blank=True, null=True, help_text="Reference identifier (e.g., WIP batch number)")
    changes = models.JSONField(default=dict, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['-created_at'], name='idx_audit_created'),
            models.Index(fields=['action'], name='idx_audit_action'),
            models.Index(fields=['model_name'], name='idx_audit_model'),
            models.Index(fields=['object_reference'], name='idx_audit_reference'),
        ]
