"""FastAPI dependencies"""
from fastapi import Request

from intelcore.core import IntelligenceCore


def get_core(request: Request) -> IntelligenceCore:
    """Get the IntelligenceCore built at startup"""
    return request.app.state.core
