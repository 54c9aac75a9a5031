"""
Static data export for the dashboard.
"""
