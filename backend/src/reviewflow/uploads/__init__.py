"""Upload broker and upload HTTP endpoints"""
