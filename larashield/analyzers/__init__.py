"""Concrete analyzers and the default registry."""

from larashield.analyzers.app_key import AppKeyAnalyzer
from larashield.analyzers.authentication import AuthenticationAnalyzer
from larashield.analyzers.base import Analyzer
from larashield.analyzers.license import LicenseAnalyzer
from larashield.analyzers.mass_assignment import MassAssignmentAnalyzer
from larashield.analyzers.password_security import PasswordSecurityAnalyzer
from larashield.analyzers.stable_dependency import StableDependencyAnalyzer

ALL_ANALYZERS = [
    AuthenticationAnalyzer,
    PasswordSecurityAnalyzer,
    MassAssignmentAnalyzer,
    LicenseAnalyzer,
    StableDependencyAnalyzer,
    AppKeyAnalyzer,
]

__all__ = [
    "ALL_ANALYZERS",
    "Analyzer",
    "AppKeyAnalyzer",
    "AuthenticationAnalyzer",
    "LicenseAnalyzer",
    "MassAssignmentAnalyzer",
    "PasswordSecurityAnalyzer",
    "StableDependencyAnalyzer",
]
