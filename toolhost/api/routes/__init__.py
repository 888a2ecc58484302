"""
API Routes
"""
