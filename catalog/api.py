"""
HTTP surface: listing, tag vocabulary, raw relay and tag preferences
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote

import httpx
import structlog
from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse

from .config import Config
from .douban import DoubanCatalog, parse_listing_query
from .errors import (AllStrategiesExhausted, ForbiddenTarget, InvalidRequest, ProtectedTag,
                     TagAlreadyExists)
from .fetcher import DEFAULT_USER_AGENT, HTTPFetcher
from .models import TagRequest
from .resolver import FallbackResolver
from .storage import KeyValueStorage, create_storage
from .strategies import build_strategies
from .tags import TagStore

logger = structlog.get_logger(__name__)

DEFAULT_CHAINS = {
    'listing': ['direct', 'allorigins', 'corsproxy'],
    'scrape': ['direct'],
    'relay': ['direct', 'allorigins', 'cors-anywhere', 'thingproxy'],
}


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({'error': message}, status_code=status_code)


def create_app(config: Config, transport: httpx.AsyncBaseTransport = None, storage: KeyValueStorage = None) -> FastAPI:
    """Wire fetcher, resolver, catalog and tag store into a FastAPI app."""
    attempt_timeout = float(config.resolver.get('attempt_timeout', 8))
    query_timeout = config.resolver.get('query_timeout')

    fetcher = HTTPFetcher(
        user_agent=config.fetcher.get('user_agent', DEFAULT_USER_AGENT),
        timeout=attempt_timeout,
        max_response_size=int(config.fetcher.get('max_response_size', 10 * 1024 * 1024)),
        transport=transport,
    )
    resolver = FallbackResolver(
        fetcher,
        attempt_timeout=attempt_timeout,
        query_timeout=float(query_timeout) if query_timeout is not None else None,
    )

    chains = {name: build_strategies(config.strategies.get(name, default))
              for name, default in DEFAULT_CHAINS.items()}
    for name, strategies in chains.items():
        resolver.check_budget(len(strategies), chain=name)

    catalog = DoubanCatalog(
        resolver,
        base_url=config.upstream.get('base_url', 'https://movie.douban.com'),
        listing_strategies=chains['listing'],
        scrape_strategies=chains['scrape'],
        relay_strategies=chains['relay'],
        allowed_hosts=config.upstream.get('allowed_hosts', ['douban.com']),
    )
    if storage is None:
        storage = create_storage(config.as_dict())
    tag_store = TagStore(storage)

    listing_max_age = int(config.cache.get('listing_max_age', 300))
    tags_max_age = int(config.cache.get('tags_max_age', 3600))
    proxy_max_age = int(config.cache.get('proxy_max_age', 300))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("catalog_started", chains={k: [s.name for s in v] for k, v in chains.items()})
        yield
        await fetcher.close()
        storage.close()
        logger.info("catalog_stopped")

    app = FastAPI(title="douban-catalog", lifespan=lifespan)
    app.state.catalog = catalog
    app.state.tag_store = tag_store

    @app.exception_handler(InvalidRequest)
    async def invalid_request_handler(request: Request, exc: InvalidRequest):
        logger.info("invalid_request", path=request.url.path, error=str(exc))
        return _error(400, str(exc))

    @app.exception_handler(ForbiddenTarget)
    async def forbidden_target_handler(request: Request, exc: ForbiddenTarget):
        logger.warning("forbidden_target", path=request.url.path, error=str(exc))
        return _error(403, str(exc))

    @app.exception_handler(ProtectedTag)
    async def protected_tag_handler(request: Request, exc: ProtectedTag):
        return _error(403, str(exc))

    @app.exception_handler(TagAlreadyExists)
    async def tag_exists_handler(request: Request, exc: TagAlreadyExists):
        return _error(409, str(exc))

    @app.get("/health")
    async def health_check():
        return {"status": "ok"}

    @app.get("/resolve")
    async def resolve_listing(request: Request):
        query = parse_listing_query(request.query_params)
        result = await catalog.list_subjects(query)

        if result.soft_failure:
            headers = {'Cache-Control': 'no-store'}
            content = result.model_dump(exclude_none=True)
            content['debug'] = {
                'original_tag': query.tag,
                'upstream_tag': query.upstream_tag,
                'title': query.title,
                'timestamp': datetime.now(timezone.utc).isoformat(),
            }
        else:
            headers = {
                'Cache-Control': f'public, max-age={listing_max_age}',
                'X-Douban-Tag': quote(query.upstream_tag),
                'X-Original-Tag': quote(query.tag),
            }
            content = result.model_dump(exclude_none=True)
        return JSONResponse(content, headers=headers)

    @app.get("/resolve/tags")
    async def resolve_tags(type: Optional[str] = None):
        listing = await catalog.list_tags(type or '')
        return JSONResponse(
            {
                'code': 200,
                'message': 'success',
                'type': listing.type,
                'tags': listing.tags,
                'source': listing.source,
            },
            headers={'Cache-Control': f'public, max-age={tags_max_age}'},
        )

    @app.get("/resolve/test")
    async def upstream_check():
        target, reports = await catalog.check_upstream()
        return JSONResponse(
            {
                'success': any(r.ok for r in reports),
                'target': target.url,
                'timestamp': datetime.now(timezone.utc).isoformat(),
                'strategies': [r.model_dump() for r in reports],
            },
            headers={'Cache-Control': 'no-store'},
        )

    @app.get("/proxy")
    async def relay(url: Optional[str] = None):
        try:
            resolution = await catalog.relay(url)
        except AllStrategiesExhausted as e:
            return JSONResponse(
                {
                    'error': 'All proxy services failed',
                    'details': e.last_error,
                    'target_url': url,
                    'attempted': e.attempted,
                },
                status_code=502,
            )
        return JSONResponse(
            resolution.payload,
            headers={
                'Cache-Control': f'public, max-age={proxy_max_age}',
                'X-Proxy-Service': resolution.strategy,
            },
        )

    def _tags_response(media_type, category, tags):
        return {'type': media_type, 'category': category, 'tags': tags}

    @app.get("/preferences/tags")
    def get_tags(type: str, category: Optional[str] = None,
                 x_client_id: str = Header(default='anonymous')):
        return _tags_response(type, category, tag_store.load(x_client_id, type, category))

    @app.post("/preferences/tags")
    def add_tag(body: TagRequest, type: str, category: Optional[str] = None,
                x_client_id: str = Header(default='anonymous')):
        return _tags_response(type, category, tag_store.add(x_client_id, type, body.tag, category))

    @app.delete("/preferences/tags/{tag}")
    def delete_tag(tag: str, type: str, category: Optional[str] = None,
                   x_client_id: str = Header(default='anonymous')):
        return _tags_response(type, category, tag_store.remove(x_client_id, type, tag, category))

    @app.post("/preferences/tags/reset")
    def reset_tags(type: str, category: Optional[str] = None,
                   x_client_id: str = Header(default='anonymous')):
        return _tags_response(type, category, tag_store.reset(x_client_id, type, category))

    return app
