"""
HTTP routers for scheduler triggers and provider webhooks
"""
