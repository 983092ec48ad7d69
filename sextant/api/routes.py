"""REST API routes for Sextant.

Provides endpoints for:
- Generating a draft recipe from a document
- Listing, inspecting and promoting stored recipes
- Parsing a document with a stable recipe
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, ValidationError

from sextant.api.auth import require_api_auth
from sextant.api.recipe_service import NoStableRecipe, RecipeService
from sextant.conduit.budget import BudgetExceeded
from sextant.config.settings import SextantConfig
from sextant.core.recipe import LifecycleState
from sextant.core.schemas import RecordValidationError
from sextant.document.toolset import DocumentSnapshot
from sextant.pipeline.extraction import MissingRequiredField, UnsupportedSelectorStrategy
from sextant.pipeline.heuristic import SelectorDerivationFailed
from sextant.store.recipe_store import (
    InvalidLifecycleTransition,
    RecipeAlreadyStable,
    RecipeNotFound,
    StoredRecipe,
)

router = APIRouter(dependencies=[Depends(require_api_auth)])

_recipe_service: RecipeService | None = None


def get_recipe_service() -> RecipeService:
    """Process-wide service, built from the environment on first use."""
    global _recipe_service
    if _recipe_service is None:
        _recipe_service = RecipeService.from_config(SextantConfig())
    return _recipe_service


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, (RecipeNotFound, NoStableRecipe)):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (RecipeAlreadyStable, InvalidLifecycleTransition)):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=422, detail=str(exc))


_UNPROCESSABLE = (
    BudgetExceeded,
    SelectorDerivationFailed,
    MissingRequiredField,
    RecordValidationError,
    UnsupportedSelectorStrategy,
    ValidationError,
)


# --- Request/Response Models ---


class BudgetOverride(BaseModel):
    max_passes: int | None = None
    max_tool_invocations: int | None = None
    max_duration_ms: int | None = None


class GenerateRequest(BaseModel):
    """A fetched document to synthesize a recipe for."""

    domain: str = Field(min_length=1)
    path: str = "/"
    html: str = Field(min_length=1)
    ocr_transcript: list[str] = Field(default_factory=list)
    markdown: str | None = None
    actor: str | None = None
    budget: BudgetOverride | None = None


class PassView(BaseModel):
    id: str
    label: str
    status: str
    notes: list[str]
    tool_invocations: int


class GenerateResponse(BaseModel):
    status: str
    confidence: float
    origin: str
    stop_reason: str | None = None
    recipe_id: str | None = None
    stored: bool
    passes: list[PassView]
    recipe: dict[str, Any]


class RecipeSummary(BaseModel):
    id: str
    name: str
    version: str
    state: LifecycleState
    created_at: str
    updated_at: str
    promoted_at: str | None = None

    @classmethod
    def from_stored(cls, stored: StoredRecipe) -> RecipeSummary:
        return cls(
            id=stored.id,
            name=stored.recipe.name,
            version=stored.recipe.version,
            state=stored.state,
            created_at=stored.created_at.isoformat(),
            updated_at=stored.updated_at.isoformat(),
            promoted_at=stored.promoted_at.isoformat() if stored.promoted_at else None,
        )


class PromoteRequest(BaseModel):
    actor: str | None = None
    notes: str | None = None


class ParseRequest(BaseModel):
    html: str = Field(min_length=1)
    recipe_id: str | None = None
    domain: str | None = None
    path: str | None = None


# --- Endpoints ---


@router.post("/recipes/generate", response_model=GenerateResponse)
def generate_recipe(
    request: GenerateRequest, service: RecipeService = Depends(get_recipe_service)
) -> GenerateResponse:
    """Run the three-pass orchestration and store the recipe as a draft if it validates."""
    document = DocumentSnapshot(domain=request.domain, path=request.path, html=request.html)
    overrides = request.budget.model_dump(exclude_none=True) if request.budget else None
    try:
        result = service.generate(
            document,
            ocr_transcript=request.ocr_transcript,
            markdown=request.markdown,
            actor=request.actor,
            budget_overrides=overrides,
        )
    except _UNPROCESSABLE as exc:
        raise _http_error(exc) from exc

    orchestration = result.orchestration
    return GenerateResponse(
        status=orchestration.validation.status,
        confidence=orchestration.validation.confidence,
        origin=orchestration.synthesis.origin,
        stop_reason=orchestration.validation.stop_reason,
        recipe_id=result.stored.id if result.stored else None,
        stored=result.stored is not None,
        passes=[
            PassView(
                id=summary.id,
                label=summary.label,
                status=summary.status,
                notes=summary.notes,
                tool_invocations=len(summary.tool_usage),
            )
            for summary in orchestration.passes
        ],
        recipe=(result.stored.recipe if result.stored else orchestration.synthesis.recipe).model_dump(
            mode="json"
        ),
    )


@router.get("/recipes", response_model=list[RecipeSummary])
def list_recipes(
    state: LifecycleState | None = Query(default=None),
    service: RecipeService = Depends(get_recipe_service),
) -> list[RecipeSummary]:
    return [RecipeSummary.from_stored(stored) for stored in service.store.list(state=state)]


@router.get("/recipes/{recipe_id}")
def get_recipe(
    recipe_id: str, service: RecipeService = Depends(get_recipe_service)
) -> dict[str, Any]:
    stored = service.store.get_by_id(recipe_id)
    if stored is None:
        raise HTTPException(status_code=404, detail=f"Recipe {recipe_id} not found")
    return stored.model_dump(mode="json")


@router.post("/recipes/{recipe_id}/promote", response_model=RecipeSummary)
def promote_recipe(
    recipe_id: str,
    request: PromoteRequest | None = None,
    service: RecipeService = Depends(get_recipe_service),
) -> RecipeSummary:
    request = request or PromoteRequest()
    try:
        stored = service.promote(recipe_id, actor=request.actor, notes=request.notes)
    except (RecipeNotFound, RecipeAlreadyStable, InvalidLifecycleTransition) as exc:
        raise _http_error(exc) from exc
    return RecipeSummary.from_stored(stored)


@router.post("/parse")
def parse_document(
    request: ParseRequest, service: RecipeService = Depends(get_recipe_service)
) -> dict[str, Any]:
    """Extract a record from ``html`` with a stored recipe."""
    try:
        result = service.parse(
            request.html, recipe_id=request.recipe_id, domain=request.domain, path=request.path
        )
    except (RecipeNotFound, NoStableRecipe, *_UNPROCESSABLE) as exc:
        raise _http_error(exc) from exc
    return result.model_dump(mode="json", exclude_none=True)
