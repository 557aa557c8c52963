"""
Static data tables.

Everything in this package is lookup data: keys, environment variables,
file lists and preset catalogues. Logic lives in the services.
"""
