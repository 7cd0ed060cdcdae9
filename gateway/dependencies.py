"""
gateway/dependencies.py

FastAPI dependencies resolving the components built in the lifespan.
"""

from fastapi import Request

from gateway.services.stream_processor import StreamProcessor


def get_engine(request: Request) -> StreamProcessor:
    return request.app.state.engine
