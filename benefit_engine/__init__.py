"""
Bike Benefit Engine - Backend Service

FastAPI service for the bike benefit enrollment workflow.
Derives benefit/contract status from stored facts and onboards employees
via guarded CSV bulk imports against Supabase.
"""

__version__ = "0.1.0"
