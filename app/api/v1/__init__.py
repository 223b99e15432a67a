"""API v1 endpoints and schemas"""
