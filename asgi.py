"""
asgi.py -- ASGI entry point for pcvisor.

The browser SPA is built and served separately; this process serves only
/api/* and /uploads/*.

Run with:  uvicorn asgi:app --reload
           python main.py serve
"""

from api.main import app

__all__ = ["app"]
