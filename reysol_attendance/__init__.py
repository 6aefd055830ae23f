"""
Attendance tracking client for the Reysol supporters' group.
"""

__version__ = '1.0.0'
