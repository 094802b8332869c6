"""
Transport strategies: the direct request and the public CORS relays
"""
import json
from typing import Dict, Iterable, List
from urllib.parse import quote

from .errors import ShapeViolation
from .models import RelayRequest, UpstreamTarget

# Characters left unescaped by JavaScript's encodeURIComponent
URI_COMPONENT_SAFE = "!~*'()"


def encode_uri_component(value: str) -> str:
    return quote(value, safe=URI_COMPONENT_SAFE)


class ProxyStrategy:
    """A named way of reaching the upstream provider.

    Subclasses decide how the target is embedded in the relay URL and how the
    relay's envelope is removed from the response body.
    """
    name: str = None

    def build_request(self, target: UpstreamTarget) -> RelayRequest:
        return RelayRequest(url=self.relay_url(target.url), headers=self.headers(target))

    def relay_url(self, url: str) -> str:
        raise NotImplementedError

    def headers(self, target: UpstreamTarget) -> Dict[str, str]:
        return {'Accept': target.accept}

    def unwrap_response(self, body: str) -> str:
        """Return the upstream body carried by the relay response."""
        return body

    def __repr__(self):
        return f"<{type(self).__name__} {self.name}>"


class DirectStrategy(ProxyStrategy):
    name = 'direct'

    def relay_url(self, url: str) -> str:
        return url

    def headers(self, target: UpstreamTarget) -> Dict[str, str]:
        return {
            'Referer': 'https://movie.douban.com/',
            'Accept': target.accept,
            'Accept-Language': 'zh-CN,zh;q=0.9,en;q=0.8',
            'Cache-Control': 'no-cache',
        }


class AllOriginsStrategy(ProxyStrategy):
    name = 'allorigins'

    def relay_url(self, url: str) -> str:
        return f"https://api.allorigins.win/get?url={encode_uri_component(url)}"

    def headers(self, target: UpstreamTarget) -> Dict[str, str]:
        return {'Accept': 'application/json'}

    def unwrap_response(self, body: str) -> str:
        try:
            envelope = json.loads(body)
        except json.JSONDecodeError as e:
            raise ShapeViolation(f"allorigins envelope is not JSON: {e}", self.name)
        contents = envelope.get('contents') if isinstance(envelope, dict) else None
        if not isinstance(contents, str):
            raise ShapeViolation("allorigins envelope has no contents", self.name)
        return contents


class CorsProxyStrategy(ProxyStrategy):
    name = 'corsproxy'

    def relay_url(self, url: str) -> str:
        return f"https://corsproxy.io/?{encode_uri_component(url)}"


class CorsAnywhereStrategy(ProxyStrategy):
    name = 'cors-anywhere'

    def relay_url(self, url: str) -> str:
        return f"https://cors-anywhere.herokuapp.com/{url}"


class ThingProxyStrategy(ProxyStrategy):
    name = 'thingproxy'

    def relay_url(self, url: str) -> str:
        return f"https://thingproxy.freeboard.io/fetch/{encode_uri_component(url)}"


STRATEGIES = {
    cls.name: cls
    for cls in (DirectStrategy, AllOriginsStrategy, CorsProxyStrategy, CorsAnywhereStrategy, ThingProxyStrategy)
}


def build_strategies(names: Iterable[str]) -> List[ProxyStrategy]:
    """Instantiate strategies in the given order, rejecting unknown names."""
    strategies = []
    for name in names:
        if name not in STRATEGIES:
            raise ValueError(f"Unknown proxy strategy: {name} (known: {', '.join(STRATEGIES)})")
        strategies.append(STRATEGIES[name]())
    return strategies
