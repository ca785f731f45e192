"""
ClaimDesk - Core Application Package

This package contains the backend logic for the ClaimDesk insurance claims
CRM, including claim intake, the automation rule engine, follow-up cadences,
vendor messaging integrations, and the strategic LLM context pipeline.
"""

__version__ = "0.1.0"
