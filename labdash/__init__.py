"""
LabDash Webhooks
Crelio LIS webhook receiver with patient-data consolidation
"""
__version__ = "1.0.0"
