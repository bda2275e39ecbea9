"""
MediaGuard - Content Fingerprint Registry and Duplicate Detection

Computes multi-tier fingerprints for submitted media and keeps an append-only
registry of asset ownership with dispute arbitration.
"""

__version__ = "1.0.0"
__author__ = "MediaGuard Team"
__description__ = "Content Fingerprint Registry and Duplicate Detection"
