"""
Authentication package for the Loyalty Dashboard client.

This package contains session storage and the session manager that
coordinates token refresh across concurrent requests.
"""
