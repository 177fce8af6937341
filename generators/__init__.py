"""
Synthetic data generators used to seed demo clinics.
"""
