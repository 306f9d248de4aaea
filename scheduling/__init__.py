"""
Appointment scheduling core for the service-business back office.
"""
