from .base import BaseTestModule, TestCase, TestResult, classify_outcome, case_summary
from .authorization import AuthorizationTests
from .networking import NetworkingTests

ALL_TEST_MODULES = [
    AuthorizationTests,
    NetworkingTests,
]

__all__ = [
    "BaseTestModule",
    "TestCase",
    "TestResult",
    "classify_outcome",
    "case_summary",
    "AuthorizationTests",
    "NetworkingTests",
    "ALL_TEST_MODULES",
]
