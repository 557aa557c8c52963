"""
SA-MP Runner CLI Frontend

Command-line interface over the backend services.
"""
