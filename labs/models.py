"""
Database models for the clinic laboratory backend.

These models capture the laboratory side of the clinic: staff and
patient users, the test catalog, lab orders with their lifecycle and
the results attached when an order completes.  Field names mirror the
JSON payloads used by the front-end (``testName``, ``orderedById`` ...)
once converted to snake case.
"""
from __future__ import annotations

import uuid

from django.contrib.auth.models import AbstractUser
from django.db import models

from labs.services.lifecycle import OrderStatus, Priority, is_terminal


class User(AbstractUser):
    """Custom user model carrying the clinic role.

    Roles mirror the front-end roles.  Capabilities for the lab workflow
    are derived from the role in :mod:`labs.permissions`.
    """
    ROLE_ADMIN = 'admin'
    ROLE_DOCTOR = 'doctor'
    ROLE_RECEPTIONIST = 'receptionist'
    ROLE_LAB_TECHNICIAN = 'lab_technician'
    ROLE_PHARMACIST = 'pharmacist'
    ROLE_PATIENT = 'patient'
    ROLE_CHOICES = [
        (ROLE_ADMIN, 'Administrator'),
        (ROLE_DOCTOR, 'Doctor'),
        (ROLE_RECEPTIONIST, 'Receptionist'),
        (ROLE_LAB_TECHNICIAN, 'Lab technician'),
        (ROLE_PHARMACIST, 'Pharmacist'),
        (ROLE_PATIENT, 'Patient'),
    ]
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default=ROLE_PATIENT, db_index=True)

    def __str__(self) -> str:
        return f"{self.username} ({self.role})"


class LabTest(models.Model):
    """A catalog entry for an orderable test.

    ``units`` lists the unit strings accepted for result parameters of
    this test.  An empty list leaves units as free text.
    """
    code = models.CharField(max_length=32, unique=True)
    name = models.CharField(max_length=255)
    department = models.CharField(max_length=128, blank=True)
    turnaround_hours = models.PositiveIntegerField(null=True, blank=True)
    units = models.JSONField(default=list, blank=True)
    normal_range = models.CharField(max_length=128, blank=True)
    is_active = models.BooleanField(default=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['code']

    def __str__(self) -> str:
        return f"{self.name} ({self.code})"


class LabOrder(models.Model):
    """One requested diagnostic test for one patient.

    ``status`` only changes through :mod:`labs.services.orders`; every
    change bumps ``version`` so that writers can compare-and-swap.
    """
    STATUS_CHOICES = OrderStatus.choices
    PRIORITY_CHOICES = Priority.choices

    BILL_STATUS_CHOICES = [
        ('PENDING', 'Pending'),
        ('PAID', 'Paid'),
        ('PARTIALLY_PAID', 'Partially paid'),
        ('CANCELLED', 'Cancelled'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    patient = models.ForeignKey(User, on_delete=models.PROTECT, related_name='lab_orders')
    ordered_by = models.ForeignKey(User, on_delete=models.PROTECT, related_name='lab_orders_placed')
    test = models.ForeignKey(LabTest, null=True, blank=True, on_delete=models.SET_NULL, related_name='orders')
    test_name = models.CharField(max_length=255)
    test_code = models.CharField(max_length=32, blank=True, null=True)
    priority = models.CharField(max_length=10, choices=PRIORITY_CHOICES, default=Priority.ROUTINE.value, db_index=True)
    status = models.CharField(max_length=32, choices=STATUS_CHOICES, db_index=True)
    requires_payment = models.BooleanField(default=True)
    notes = models.TextField(blank=True, null=True)

    bill_id = models.CharField(max_length=64, blank=True, null=True)
    bill_status = models.CharField(max_length=16, choices=BILL_STATUS_CHOICES, blank=True, null=True)

    due_at = models.DateTimeField(null=True, blank=True, db_index=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancel_reason = models.CharField(max_length=255, blank=True)

    version = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['status', 'created_at'], name='laborder_status_created_idx'),
            models.Index(fields=['ordered_by', 'created_at'], name='laborder_doctor_created_idx'),
            models.Index(fields=['patient', 'created_at'], name='laborder_patient_created_idx'),
        ]

    def __str__(self) -> str:
        return f"{self.test_name} for {self.patient_id} [{self.status}]"

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)


class LabResult(models.Model):
    """The outcome of a completed order.  Created exactly once."""
    order = models.OneToOneField(LabOrder, on_delete=models.PROTECT, related_name='result')
    technician = models.ForeignKey(User, null=True, on_delete=models.SET_NULL, related_name='lab_results')
    parameters = models.JSONField(default=list, blank=True)
    interpretation = models.TextField(blank=True, null=True)
    attachments = models.JSONField(default=list, blank=True)
    completed_at = models.DateTimeField()

    def __str__(self) -> str:
        return f"Result for {self.order_id}"


class LabOrderTransition(models.Model):
    """Records a status transition for a lab order."""
    order = models.ForeignKey(LabOrder, related_name='transitions', on_delete=models.CASCADE)
    from_status = models.CharField(max_length=32, null=True, blank=True)
    to_status = models.CharField(max_length=32)
    operator = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='lab_transitions')
    timestamp = models.DateTimeField(auto_now_add=True)
    reason = models.CharField(max_length=255, blank=True)

    class Meta:
        ordering = ['timestamp', 'id']

    def __str__(self) -> str:
        return f"{self.order_id}: {self.from_status} → {self.to_status}"


class AuditEvent(models.Model):
    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=64)
    object_type = models.CharField(max_length=64, blank=True, null=True)
    object_id = models.CharField(max_length=64, blank=True, null=True)
    detail = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['action', 'created_at'], name='audit_action_created_idx'),
            models.Index(fields=['object_type', 'object_id', 'created_at'], name='audit_object_created_idx'),
        ]

    def __str__(self):
        return f"{self.action}:{self.user_id}@{self.created_at:%F %T}"
