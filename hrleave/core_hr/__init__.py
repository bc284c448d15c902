"""Core HR module — employee directory and balance projection."""

from hrleave.core_hr.models import Employee, EmployeeLeaveBalance

__all__ = ["Employee", "EmployeeLeaveBalance"]
