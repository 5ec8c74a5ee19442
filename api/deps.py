from __future__ import annotations

from fastapi import Request

from pipeline.engine import LogPulseEngine


def get_engine(request: Request) -> LogPulseEngine:
    return request.app.state.engine
