"""
Banking API

A customer/account/transaction API guarded by a separate authentication
service that issues and verifies signed bearer tokens.
"""

__version__ = "1.0.0"
