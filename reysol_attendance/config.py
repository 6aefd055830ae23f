#!/usr/bin/env python3
"""
Defaults for the attendance client.

Every value here can be overridden from the command line (see ``cli.py``);
the endpoint URL and database path also read environment variables.
"""

# Spreadsheet web-app endpoint for the production deployment
DEFAULT_API_URL = (
    'https://script.google.com/macros/s/'
    'AKfycbwqw-5gsFUaPoK9K7IkK9-PXwKL9pDXUjWgPpbNapRSwWtsUUUx2yrrUBLUxTEUyUpDEw/exec'
)
API_URL_ENVVAR = 'REYSOL_API_URL'

# Cold starts of the spreadsheet endpoint can take a long time
REQUEST_TIMEOUT = 30.0

DEFAULT_DB_PATH = 'reysol_attendance.db'
DB_PATH_ENVVAR = 'REYSOL_DB_PATH'
ADMIN_PASSWORD_ENVVAR = 'REYSOL_ADMIN_PASSWORD'

# Local storage keys
STORAGE_KEY = 'reysol_attendance_data'
CURRENT_USER_KEY = 'reysol_currentUser'

DEFAULT_MATCH_LIMIT = 10
MIN_ADMIN_PASSWORD_LENGTH = 3
