"""
Pydantic models for fingerprints, registry records and disputes.
"""

from .fingerprint import *
from .registry import *
