"""Technology usage and mental health survey analysis pipeline"""

__version__ = "1.0.0"
