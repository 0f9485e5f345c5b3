"""Data quality checks for persisted settings."""

from .integrity import IntegrityChecker, IntegrityIssue, IntegrityReport, IssueType

__all__ = ["IntegrityChecker", "IntegrityIssue", "IntegrityReport", "IssueType"]
