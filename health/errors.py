"""Custom exceptions raised by the health evaluator."""
from __future__ import annotations


class HealthEvaluationError(Exception):
    """Base class for failures that stop a single evaluation."""


class InstanceNotFoundError(HealthEvaluationError):
    """Requested live instance does not exist."""

    def __init__(self, instance_id: str):
        super().__init__(f"Instance {instance_id} not found")
        self.instance_id = instance_id


class InstanceOfflineError(HealthEvaluationError):
    """Instance is OFFLINE; offline instances are skipped, not evaluated."""

    def __init__(self, instance_id: str):
        super().__init__(f"Instance {instance_id} is offline")
        self.instance_id = instance_id
