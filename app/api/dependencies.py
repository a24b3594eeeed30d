"""
Shared FastAPI dependencies.
The pipeline objects are built once in the application lifespan and kept on
app.state.
"""

from fastapi import Request

from app.services.job_processor import AIJobProcessor
from app.services.retry_worker import RetryWorker


def get_job_processor(request: Request) -> AIJobProcessor:
    return request.app.state.job_processor


def get_retry_worker(request: Request) -> RetryWorker:
    return request.app.state.retry_worker
