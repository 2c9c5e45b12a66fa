"""
LabDash Services
Field extraction, normalization, consolidation and side effects
"""
