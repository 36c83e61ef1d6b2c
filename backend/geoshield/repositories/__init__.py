"""
Data access for audit logs and listed items.
"""
