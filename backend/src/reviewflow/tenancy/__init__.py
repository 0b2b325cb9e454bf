"""Tenant provisioning and request-scoped tenant context"""
