"""
MedReport AI Service - Gemini-powered lab report analysis

Turns an uploaded lab report (image, PDF or text) into a validated clinical
record plus deterministic safety alerts and drug interaction findings.
"""

__version__ = "0.3.0"
