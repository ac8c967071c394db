"""
Custom Role Validator
=====================
Proves that an Azure custom RBAC role denies the operations it must deny.

Provisions a throwaway hub/spoke test environment, assigns the role to a
short-lived service principal, attempts each catalogued operation as that
principal, and reports PASS / FAIL / ERROR / SKIPPED per case.

WARNING: Writes are confined to the suite's own resource group and app
         registration; everything provisioned is deleted at the end of a run.
"""

__version__ = "1.0.0"
__author__ = "Custom Role Validator"
