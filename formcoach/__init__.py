"""
FormCoach: exercise form analysis from pose landmarks.
"""

__version__ = "1.0.0"
