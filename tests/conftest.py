import json

import httpx
import pytest

from catalog.config import Config
from catalog.fetcher import HTTPFetcher
from catalog.storage import MemoryStorage

TOP250_HTML = """
<html><body>
<ol class="grid_view">
  <li><div class="item">
    <div class="pic"><em>1</em>
      <a href="https://movie.douban.com/subject/1292052/">
        <img width="100" alt="肖申克的救赎" src="http://img2.doubanio.com/view/photo/s_ratio_poster/public/p480747492.jpg">
      </a>
    </div>
    <div class="info"><div class="bd"><div class="star">
      <span class="rating_num" property="v:average">9.7</span>
    </div></div></div>
  </div></li>
  <li><div class="item">
    <div class="pic"><em>2</em>
      <a href="https://movie.douban.com/subject/1291546/">
        <img width="100" alt="霸王别姬" src="https://img3.doubanio.com/view/photo/s_ratio_poster/public/p2561716440.jpg">
      </a>
    </div>
    <div class="info"><div class="bd"><div class="star">
      <span class="rating_num" property="v:average">9.6</span>
    </div></div></div>
  </div></li>
  <li><div class="item">
    <div class="pic"><em>3</em>
      <a href="https://movie.douban.com/subject/9999999/">no poster here</a>
    </div>
    <div class="info"><div class="bd"><div class="star">
      <span class="rating_num" property="v:average">9.5</span>
    </div></div></div>
  </div></li>
  <li><div class="item">
    <div class="pic"><em>4</em>
      <a href="http://movie.douban.com/subject/1292720/">
        <img width="100" alt="阿甘正传" src="http://img2.doubanio.com/view/photo/s_ratio_poster/public/p2372307693.jpg">
      </a>
    </div>
    <div class="info"><div class="bd"><div class="star">
      <span class="rating_num" property="v:average">9.5</span>
    </div></div></div>
  </div></li>
</ol>
</body></html>
"""


def make_subjects(count, start=0):
    return [
        {
            'id': str(1000 + i),
            'title': f'Movie {i}',
            'cover': f'https://img.doubanio.com/view/photo/p{1000 + i}.jpg',
            'rate': f'{5 + (i % 5)}.0',
            'url': f'https://movie.douban.com/subject/{1000 + i}/',
        }
        for i in range(start, start + count)
    ]


def subjects_body(count, start=0):
    return json.dumps({'subjects': make_subjects(count, start)}, ensure_ascii=False)


class Upstream:
    """Mock transport routing requests by host, recording every call."""

    def __init__(self):
        self.routes = {}
        self.calls = []

    def on(self, host, handler):
        self.routes[host] = handler
        return self

    def hosts_called(self):
        return [request.url.host for request in self.calls]

    def __call__(self, request: httpx.Request):
        self.calls.append(request)
        handler = self.routes.get(request.url.host)
        if handler is None:
            raise httpx.ConnectError("no route to host", request=request)
        return handler(request)

    @property
    def transport(self):
        return httpx.MockTransport(self)


def timeout(request):
    raise httpx.ReadTimeout("timed out", request=request)


def json_response(body, status_code=200):
    return lambda request: httpx.Response(
        status_code, text=body, headers={'content-type': 'application/json; charset=utf-8'})


def html_response(body, status_code=200):
    return lambda request: httpx.Response(
        status_code, text=body, headers={'content-type': 'text/html; charset=utf-8'})


def allorigins_response(contents):
    return json_response(json.dumps({'contents': contents, 'status': {'http_code': 200}}))


@pytest.fixture
def upstream():
    return Upstream()


@pytest.fixture
async def fetcher(upstream):
    fetcher = HTTPFetcher(transport=upstream.transport, timeout=2.0)
    yield fetcher
    await fetcher.close()


@pytest.fixture
def config_data():
    return {
        'upstream': {'base_url': 'https://movie.douban.com', 'allowed_hosts': ['douban.com']},
        'resolver': {'attempt_timeout': 2, 'query_timeout': 30},
        'strategies': {
            'listing': ['direct', 'allorigins', 'corsproxy'],
            'scrape': ['direct'],
            'relay': ['direct', 'allorigins', 'cors-anywhere', 'thingproxy'],
        },
        'cache': {'listing_max_age': 300, 'tags_max_age': 3600, 'proxy_max_age': 300},
        'storage': {'backend': 'memory'},
    }


@pytest.fixture
def config(config_data):
    return Config(data=config_data)


@pytest.fixture
def storage():
    return MemoryStorage()
