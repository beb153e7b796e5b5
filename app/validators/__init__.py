"""
app/validators package marker.
"""

from app.validators.job_validator import JobDefinitionValidator

__all__ = ["JobDefinitionValidator"]
