"""Model catalogue endpoint."""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from chat_stream.api.deps import get_model_registry
from chat_stream.services.model_registry import ModelRegistry

router = APIRouter()


@router.get("/models")
async def list_models(registry: ModelRegistry = Depends(get_model_registry)) -> Dict[str, Any]:
    """List selectable models with their per-million-token prices."""
    return {
        "default_model": registry.default_model,
        "models": [
            {
                "model": pricing.model,
                "input_per_mtok": pricing.input_per_mtok,
                "output_per_mtok": pricing.output_per_mtok,
                "cached_input_per_mtok": pricing.cached_input_per_mtok,
            }
            for pricing in registry.list_models()
        ],
    }
