"""Audit trail for administrative and upload events"""
