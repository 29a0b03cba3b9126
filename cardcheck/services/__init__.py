"""
cardcheck services.

Scanning, checklist verification and checklist learning.
"""
