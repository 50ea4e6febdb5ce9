"""
VeriGuard Security Intelligence Service
HTTP surface for fact checks, threat assessments and media authenticity checks
"""

import base64
import binascii
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from veriguard.analyst import SecurityAnalyst, build_analyst
from veriguard.config import get_settings
from veriguard.errors import (
    CredentialsMissing,
    InputReadError,
    PolicyRejected,
    ScanTimedOut,
    TransientFailure,
)
from veriguard.models import (
    FactCheckOutcome,
    MediaAuthenticityOutcome,
    ThreatAssessmentOutcome,
    UrlValidation,
)


# Logging configuration
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler('logs/veriguard.log') if os.path.exists('logs') else logging.NullHandler()
    ]
)

logger = logging.getLogger(__name__)

# Load environment variables early so Settings picks them up
load_dotenv()

VERSION = "1.0.0"
TITLE = "VeriGuard Security Intelligence Service"
DESCRIPTION = "Fact checking, threat assessment and deepfake detection backed by Gemini and VirusTotal"


@lru_cache(1)
def get_analyst() -> SecurityAnalyst:
    return build_analyst()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    settings = get_settings()
    logger.info("=" * 60)
    logger.info(f"Starting {TITLE} v{VERSION}")
    logger.info("=" * 60)
    logger.info(f"  Gemini model: {settings.gemini_model}")
    logger.info(f"  Gemini key configured: {bool(settings.gemini_api_key)}")
    logger.info(f"  VirusTotal key configured: {bool(settings.virustotal_api_key)}")
    logger.info(f"  Scan budget: {settings.scan_max_wait}s, poll every {settings.scan_poll_interval}s")
    yield
    logger.info("Shutdown complete")


app = FastAPI(
    title=TITLE,
    version=VERSION,
    description=DESCRIPTION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(status_code: int, error: str, detail: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "detail": detail, **extra})


@app.exception_handler(InputReadError)
async def input_read_handler(request: Request, exc: InputReadError):
    return _error(status.HTTP_400_BAD_REQUEST, "input_read_error", str(exc))


@app.exception_handler(PolicyRejected)
async def policy_rejected_handler(request: Request, exc: PolicyRejected):
    logger.info(f"URL rejected by policy ({exc.reason}): {exc.url}")
    return _error(422, "policy_rejected", exc.reason)


@app.exception_handler(CredentialsMissing)
async def credentials_missing_handler(request: Request, exc: CredentialsMissing):
    return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "credentials_missing", str(exc))


@app.exception_handler(ScanTimedOut)
async def scan_timed_out_handler(request: Request, exc: ScanTimedOut):
    return _error(
        status.HTTP_504_GATEWAY_TIMEOUT,
        "scan_timed_out",
        "Analysis is still running. Please check back later.",
        submission_id=exc.submission_id,
    )


@app.exception_handler(TransientFailure)
async def transient_failure_handler(request: Request, exc: TransientFailure):
    return _error(status.HTTP_502_BAD_GATEWAY, "upstream_failure", str(exc), upstream_status=exc.status_code)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "detail": str(exc) if os.getenv("DEBUG") else "An error occurred"
        }
    )


# Request models
class UrlRequest(BaseModel):
    url: str = Field(..., min_length=1, description="URL to validate or scan")
    deep_scan: bool = Field(True, description="Submit unknown URLs and wait for the analysis")


class FactCheckRequest(BaseModel):
    statement: str = Field(..., min_length=3, max_length=5000, description="Claim to verify")


class EmailRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=50000, description="Email body to analyze")


class FileRequest(BaseModel):
    filename: str = Field(..., min_length=1)
    content_base64: str = Field(..., description="Base64 encoded file bytes")
    mime_type: Optional[str] = None
    deep_scan: bool = True


class MediaRequest(BaseModel):
    content_base64: str = Field(..., description="Base64 encoded image, audio or video")
    mime_type: str = Field(..., min_length=3)


def decode_upload(content_base64: str) -> bytes:
    """Decode an uploaded artifact, raising InputReadError on bad input."""
    try:
        return base64.b64decode(content_base64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InputReadError(f"Could not decode uploaded content: {exc}") from exc


# API endpoints
@app.get("/")
async def root():
    """Root endpoint with service information"""
    return {
        "service": TITLE,
        "version": VERSION,
        "endpoints": [
            "/fact-check",
            "/analyze/email",
            "/analyze/url",
            "/analyze/file",
            "/analyze/media",
            "/validate-url",
        ],
    }


@app.get("/health")
async def health_check():
    """Report which upstream services are configured"""
    settings = get_settings()
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "components": {
            "gemini": "configured" if settings.gemini_api_key else "missing-key",
            "virustotal": "configured" if settings.virustotal_api_key else "missing-key",
            "fact_check_registry": "configured" if settings.registry_api_key else "missing-key",
        },
    }


@app.post("/validate-url", response_model=UrlValidation)
async def validate_url(request_body: UrlRequest, analyst: SecurityAnalyst = Depends(get_analyst)):
    return analyst.validate_url(request_body.url)


@app.post("/fact-check", response_model=FactCheckOutcome)
async def fact_check(request_body: FactCheckRequest, analyst: SecurityAnalyst = Depends(get_analyst)):
    logger.info(f"Fact check requested: {request_body.statement[:50]}...")
    return await analyst.check_fact(request_body.statement)


@app.post("/analyze/email", response_model=ThreatAssessmentOutcome)
async def analyze_email(request_body: EmailRequest, analyst: SecurityAnalyst = Depends(get_analyst)):
    return await analyst.analyze_email(request_body.text)


@app.post("/analyze/url", response_model=ThreatAssessmentOutcome)
async def analyze_url(request_body: UrlRequest, analyst: SecurityAnalyst = Depends(get_analyst)):
    logger.info(f"URL analysis requested: {request_body.url} (deep_scan={request_body.deep_scan})")
    return await analyst.analyze_url(request_body.url, deep_scan=request_body.deep_scan)


@app.post("/analyze/file", response_model=ThreatAssessmentOutcome)
async def analyze_file(request_body: FileRequest, analyst: SecurityAnalyst = Depends(get_analyst)):
    content = decode_upload(request_body.content_base64)
    logger.info(f"File analysis requested: {request_body.filename} ({len(content)} bytes)")
    return await analyst.analyze_file(
        content,
        request_body.filename,
        request_body.mime_type,
        deep_scan=request_body.deep_scan,
    )


@app.post("/analyze/media", response_model=MediaAuthenticityOutcome)
async def analyze_media(request_body: MediaRequest, analyst: SecurityAnalyst = Depends(get_analyst)):
    content = decode_upload(request_body.content_base64)
    return await analyst.analyze_media(content, request_body.mime_type)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=bool(os.getenv("DEBUG")),
    )
