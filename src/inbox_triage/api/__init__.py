"""
HTTP API for the inbox triage pipeline (FastAPI).
"""
