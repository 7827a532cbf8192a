"""
Query analysis API routes.

Pure endpoints: nothing here touches a database.
"""

from fastapi import APIRouter

from mongosnap.models.schemas import MetadataResponse, QueryRequest, ValidationResponse
from mongosnap.sandbox import extract_metadata, validate_security

router = APIRouter(prefix="/queries", tags=["queries"])


@router.post(
    "/metadata",
    response_model=MetadataResponse,
    summary="Extract query metadata",
    description="List the collections and operations a query refers to"
)
async def query_metadata(request: QueryRequest) -> MetadataResponse:
    return MetadataResponse(**extract_metadata(request.query).to_dict())


@router.post(
    "/validate",
    response_model=ValidationResponse,
    summary="Validate a query",
    description="Run the security deny-list over a query without executing it"
)
async def validate_query(request: QueryRequest) -> ValidationResponse:
    result = validate_security(request.query)
    return ValidationResponse(is_valid=result.is_valid, violations=result.violations)
