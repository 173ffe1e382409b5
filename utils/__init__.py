"""
Utility package for the Noloji payments application
"""
