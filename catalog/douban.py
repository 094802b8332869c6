"""
Douban catalog service: listings, tag vocabularies and the raw relay
"""
from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional, Tuple
from urllib.parse import quote, urlencode, urlparse

import structlog

from .errors import AllStrategiesExhausted, ForbiddenTarget, InvalidRequest
from .models import NormalizedResult, Resolution, StrategyReport, TagListing, UpstreamTarget
from .parsers import JsonParser, SubjectsParser, TagsParser, Top250Parser
from .resolver import FallbackResolver
from .strategies import ProxyStrategy

logger = structlog.get_logger(__name__)

MEDIA_TYPES = ('movie', 'tv')
SORT_ORDERS = ('recommend', 'time', 'rank')
TOP250_TAG = 'top250'
HTML_ACCEPT = 'text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8'

DEFAULT_PAGE_SIZE = 16
MAX_PAGE_SIZE = 100

# Front-end tag names that Douban knows under another name
TAG_ALIASES = {
    '日漫': '日本动画',
}

TV_SUBCATEGORIES = ('us_drama', 'kr_drama', 'jp_drama', 'jp_anime', 'variety')
TAG_CATEGORIES = MEDIA_TYPES + TV_SUBCATEGORIES

FALLBACK_TAGS = {
    'movie': ['热门', '最新', '经典', '豆瓣高分', '冷门佳片', '华语', '欧美', '韩国', '日本',
              '动作', '喜剧', '爱情', '科幻', '悬疑', '恐怖', '治愈'],
    'tv': ['热门', '美剧', '英剧', '韩剧', '日剧', '国产剧', '港剧', '日本动画', '综艺', '纪录片'],
    'us_drama': ['热门', '剧情', '喜剧', '犯罪', '科幻', '奇幻', '惊悚', '动作', '爱情', '家庭', '医务', '律政'],
    'kr_drama': ['热门', '爱情', '剧情', '喜剧', '悬疑', '古装', '现代', '家庭', '职场', '校园', '医务', '法律'],
    'jp_drama': ['热门', '剧情', '爱情', '喜剧', '悬疑', '推理', '职场', '校园', '家庭', '医务', '料理', '时代'],
    'jp_anime': ['热门', '冒险', '动作', '喜剧', '剧情', '奇幻', '科幻', '恋爱', '校园', '运动', '音乐', '治愈'],
    'variety': ['热门', '脱口秀', '真人秀', '音乐', '舞蹈', '喜剧', '访谈', '游戏', '美食', '旅行', '时尚', '体育'],
}


@dataclass(frozen=True)
class ListingQuery:
    media_type: str
    tag: str
    sort: str = 'recommend'
    page_size: int = DEFAULT_PAGE_SIZE
    page_start: int = 0
    title: Optional[str] = None

    @property
    def upstream_tag(self) -> str:
        return TAG_ALIASES.get(self.tag, self.tag)

    @property
    def is_top250(self) -> bool:
        return self.tag == TOP250_TAG


def _parse_int(params: Mapping[str, str], name: str, default: int) -> int:
    raw = params.get(name)
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidRequest(f"{name} must be an integer")


def parse_listing_query(params: Mapping[str, str]) -> ListingQuery:
    """Validate listing parameters, raising InvalidRequest on the first problem."""
    media_type = params.get('type')
    tag = params.get('tag')
    if not media_type or not tag:
        raise InvalidRequest("Missing required parameter: type or tag")
    if media_type not in MEDIA_TYPES:
        raise InvalidRequest("type must be movie or tv")

    sort = params.get('sort') or 'recommend'
    if sort not in SORT_ORDERS:
        raise InvalidRequest(f"sort must be one of {', '.join(SORT_ORDERS)}")

    page_size = _parse_int(params, 'pageSize', DEFAULT_PAGE_SIZE)
    if not 1 <= page_size <= MAX_PAGE_SIZE:
        raise InvalidRequest(f"pageSize must be between 1 and {MAX_PAGE_SIZE}")

    page_start = _parse_int(params, 'pageStart', 0)
    if page_start < 0:
        raise InvalidRequest("pageStart must not be negative")

    return ListingQuery(
        media_type=media_type,
        tag=tag,
        sort=sort,
        page_size=page_size,
        page_start=page_start,
        title=params.get('title'),
    )


class DoubanCatalog:
    def __init__(
        self,
        resolver: FallbackResolver,
        base_url: str = 'https://movie.douban.com',
        listing_strategies: List[ProxyStrategy] = None,
        scrape_strategies: List[ProxyStrategy] = None,
        relay_strategies: List[ProxyStrategy] = None,
        allowed_hosts: Iterable[str] = ('douban.com',),
    ):
        self.resolver = resolver
        self.base_url = base_url.rstrip('/')
        self.listing_strategies = listing_strategies or []
        self.scrape_strategies = scrape_strategies or []
        self.relay_strategies = relay_strategies or []
        self.allowed_hosts = [h.lower().strip('.') for h in allowed_hosts]

    def listing_target(self, query: ListingQuery) -> UpstreamTarget:
        params = urlencode({
            'type': query.media_type,
            'tag': query.upstream_tag,
            'sort': query.sort,
            'page_limit': query.page_size,
            'page_start': query.page_start,
        }, quote_via=quote)
        return UpstreamTarget(url=f"{self.base_url}/j/search_subjects?{params}", parser=SubjectsParser())

    def top250_target(self, page_start: int) -> UpstreamTarget:
        return UpstreamTarget(
            url=f"{self.base_url}/top250?start={page_start}&filter=",
            parser=Top250Parser(),
            accept=HTML_ACCEPT,
        )

    async def list_subjects(self, query: ListingQuery) -> NormalizedResult:
        """Resolve one listing page; exhaustion becomes a soft failure."""
        if query.is_top250:
            target, strategies = self.top250_target(query.page_start), self.scrape_strategies
        else:
            target, strategies = self.listing_target(query), self.listing_strategies

        try:
            resolution = await self.resolver.resolve(target, strategies)
        except AllStrategiesExhausted as e:
            logger.warning("listing_soft_failure",
                           url=target.url,
                           original_tag=query.tag,
                           upstream_tag=query.upstream_tag,
                           title=query.title,
                           attempted=e.attempted)
            return NormalizedResult(
                code=200,
                message="Upstream temporarily unavailable",
                list=[],
                error="network problem or upstream rate limiting",
                details=e.last_error,
                attempted=e.attempted,
                target=target.url,
            )

        items = resolution.payload[:query.page_size]
        logger.info("listing_resolved", url=target.url, strategy=resolution.strategy, count=len(items))
        return NormalizedResult(code=200, message="success", list=items)

    async def check_upstream(self) -> Tuple[UpstreamTarget, List[StrategyReport]]:
        """Try each listing strategy against a small fixed listing."""
        target = self.listing_target(ListingQuery(media_type='movie', tag='热门', page_size=5))
        return target, await self.resolver.diagnose(target, self.listing_strategies)

    async def list_tags(self, category: str) -> TagListing:
        """Tag vocabulary for a category, falling back to a hardcoded list."""
        if category not in TAG_CATEGORIES:
            raise InvalidRequest(f"type must be one of {', '.join(TAG_CATEGORIES)}")

        upstream_type = 'tv' if category in TV_SUBCATEGORIES else category
        target = UpstreamTarget(url=f"{self.base_url}/j/search_tags?type={upstream_type}", parser=TagsParser())
        try:
            resolution = await self.resolver.resolve(target, self.relay_strategies)
        except AllStrategiesExhausted as e:
            logger.warning("tag_discovery_failed", category=category, error=e.last_error)
        else:
            if resolution.payload:
                return TagListing(type=category, tags=resolution.payload, source='upstream')
            logger.info("tag_discovery_empty", category=category, strategy=resolution.strategy)

        return TagListing(type=category, tags=list(FALLBACK_TAGS[category]), source='fallback')

    def is_allowed_host(self, hostname: str) -> bool:
        hostname = hostname.lower().rstrip('.')
        return any(hostname == h or hostname.endswith('.' + h) for h in self.allowed_hosts)

    async def relay(self, url: Optional[str]) -> Resolution:
        """Relay an allow-listed upstream JSON document through the relay chain."""
        if not url:
            raise InvalidRequest("Missing target url parameter")

        parsed = urlparse(url)
        try:
            parsed.port
        except ValueError:
            raise InvalidRequest("Invalid url format")
        if parsed.scheme not in ('http', 'https') or not parsed.hostname:
            raise InvalidRequest("Invalid url format")
        if not self.is_allowed_host(parsed.hostname):
            raise ForbiddenTarget(f"Target host not allowed: {parsed.hostname}")

        logger.info("relay_requested", url=url)
        return await self.resolver.resolve(UpstreamTarget(url=url, parser=JsonParser()), self.relay_strategies)
