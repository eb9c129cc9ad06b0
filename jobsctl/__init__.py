"""jobsctl - operator CLI for the form jobs service"""

__version__ = "1.0.0"
