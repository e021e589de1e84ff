"""REST API module for the marketplace.

This module provides HTTP endpoints for:
- Creating, browsing and cancelling listings
- Bidding, buying and accepting bids
- Making, accepting and withdrawing offers
- Activity feeds, price history and collection analytics
- Storefront webhooks
- System health monitoring
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from errors import MarketError
from marketplace import Marketplace
from webhooks import WebhookProcessor
from workers import ExpirySweeper
from .responses import error_body

logger = logging.getLogger(__name__)


async def _stop_task(task: asyncio.Task) -> None:
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


def create_app(market: Optional[Marketplace] = None, run_workers: bool = True) -> FastAPI:
    """Create the FastAPI application.

    Args:
        market: Marketplace to serve, built from settings at startup when omitted
        run_workers: Whether to run the expiry sweep and payout reconciliation
            loops alongside the API
    """

    # Lifecycle management
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle startup and shutdown events."""
        logger.info("Initializing API...")
        if getattr(app.state, 'market', None) is None:
            app.state.market = Marketplace()
            app.state.webhooks = WebhookProcessor(app.state.market)
        await app.state.market.start()

        tasks = []
        sweeper = None
        if run_workers:
            sweeper = ExpirySweeper(app.state.market)
            tasks.append(asyncio.create_task(sweeper.run(), name="expiry_sweep"))
            tasks.append(asyncio.create_task(
                app.state.market.payouts.process_payouts(), name="payouts"
            ))
            logger.info(f"Started {len(tasks)} background workers")

        yield

        logger.info("Shutting down API...")
        if sweeper is not None:
            sweeper.stop()
        for task in tasks:
            await _stop_task(task)
        await app.state.market.close()

    app = FastAPI(
        title="Vortex Marketplace API",
        description="Listings, auctions, offers and settlement for the Vortex marketplace",
        version="1.0.0",
        lifespan=lifespan
    )

    if market is not None:
        app.state.market = market
        app.state.webhooks = WebhookProcessor(market)

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(MarketError)
    async def market_error_handler(request: Request, exc: MarketError):
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.code, exc.message))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        if errors:
            first = errors[0]
            location = '.'.join(str(part) for part in first.get('loc', ()))
            detail = f"{location}: {first.get('msg')}"
        else:
            detail = "Invalid request"
        return JSONResponse(status_code=400, content=error_body('validation_error', detail))

    @app.get("/")
    async def root():
        """API name, version and route groups."""
        return {
            'name': app.title,
            'version': app.version,
            'routes': ['/listings', '/offers', '/activity', '/price-history',
                       '/stats', '/collections', '/sales/pending', '/webhooks', '/health'],
        }

    # Import and include all routers
    from .listings import router as listings_router
    from .offers import router as offers_router
    from .market import router as market_router
    from .webhooks import router as webhooks_router
    from .system import router as system_router

    app.include_router(listings_router)
    app.include_router(offers_router)
    app.include_router(market_router)
    app.include_router(webhooks_router)
    app.include_router(system_router)

    return app


app = create_app()
