"""Storefront webhook endpoint."""

from typing import Any

from fastapi import APIRouter, Body, Request

from ..responses import envelope

router = APIRouter(tags=["Webhooks"])


@router.post("/webhooks")
async def receive_webhook(request: Request, payload: Any = Body(...)):
    """Validate and process a tagged storefront event."""
    return envelope(await request.app.state.webhooks.handle(payload))
