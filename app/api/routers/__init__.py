"""
FastAPI routers for the admin API.

Each module owns one group of endpoints and is registered in main.py.
"""
