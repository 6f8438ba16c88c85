"""jianpuviz — numbered musical notation (Jianpu) parser, layout and import toolkit."""

__version__ = "0.3.0"
