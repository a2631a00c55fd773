"""
                Restaurant Operations Backend

Multi-tenant restaurant backend: role-based permissions, tenant isolation
and the order/payment lifecycle behind a FastAPI surface.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
