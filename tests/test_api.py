from urllib.parse import parse_qs, quote

import pytest
from fastapi.testclient import TestClient

from catalog.api import create_app
from catalog.douban import FALLBACK_TAGS
from catalog.tags import DEFAULT_TAGS

from conftest import TOP250_HTML, allorigins_response, html_response, json_response, subjects_body, timeout


@pytest.fixture
def client(config, upstream, storage):
    app = create_app(config, transport=upstream.transport, storage=storage)
    with TestClient(app) as client:
        yield client


def test_health(client):
    assert client.get('/health').json() == {'status': 'ok'}


def test_listing_end_to_end(client, upstream):
    upstream.on('movie.douban.com', json_response(subjects_body(25)))

    response = client.get('/resolve', params={'type': 'movie', 'tag': '热门', 'pageSize': 25, 'pageStart': 0})

    assert response.status_code == 200
    body = response.json()
    assert body['code'] == 200
    assert len(body['list']) == 25
    assert all(item['poster'] for item in body['list'])
    assert set(body['list'][0]) == {'id', 'title', 'poster', 'rate'}
    assert response.headers['cache-control'] == 'public, max-age=300'
    assert response.headers['x-douban-tag'] == quote('热门')

    request = upstream.calls[0]
    assert request.url.path == '/j/search_subjects'
    assert parse_qs(request.url.query.decode()) == {
        'type': ['movie'], 'tag': ['热门'], 'sort': ['recommend'], 'page_limit': ['25'], 'page_start': ['0'],
    }


def test_listing_never_exceeds_page_size(client, upstream):
    upstream.on('movie.douban.com', json_response(subjects_body(30)))

    body = client.get('/resolve', params={'type': 'tv', 'tag': '美剧', 'pageSize': 10}).json()

    assert len(body['list']) == 10


def test_listing_falls_back_to_relay(client, upstream):
    upstream.on('movie.douban.com', timeout)
    upstream.on('api.allorigins.win', allorigins_response(subjects_body(3)))

    body = client.get('/resolve', params={'type': 'movie', 'tag': '热门'}).json()

    assert [item['id'] for item in body['list']] == ['1000', '1001', '1002']
    assert upstream.hosts_called() == ['movie.douban.com', 'api.allorigins.win']


def test_tag_alias_is_sent_upstream(client, upstream):
    upstream.on('movie.douban.com', json_response(subjects_body(1)))

    response = client.get('/resolve', params={'type': 'tv', 'tag': '日漫'})

    assert parse_qs(upstream.calls[0].url.query.decode())['tag'] == ['日本动画']
    assert response.headers['x-original-tag'] == quote('日漫')


@pytest.mark.parametrize('params', [
    {'tag': '热门'},
    {'type': 'movie'},
    {'type': 'music', 'tag': '热门'},
    {'type': 'movie', 'tag': '热门', 'pageSize': 0},
    {'type': 'movie', 'tag': '热门', 'pageSize': 101},
    {'type': 'movie', 'tag': '热门', 'pageSize': 'many'},
    {'type': 'movie', 'tag': '热门', 'pageStart': -1},
    {'type': 'movie', 'tag': '热门', 'sort': 'random'},
])
def test_invalid_listing_request(client, upstream, params):
    response = client.get('/resolve', params=params)

    assert response.status_code == 400
    assert response.json()['error']
    assert upstream.calls == []


@pytest.mark.parametrize('params', [
    {'type': 'movie', 'tag': 'top250'},
    {'type': 'tv', 'tag': 'top250', 'sort': 'time', 'pageSize': 2, 'pageStart': 25},
])
def test_top250_routes_to_scrape_path(client, upstream, params):
    upstream.on('movie.douban.com', html_response(TOP250_HTML))

    body = client.get('/resolve', params=params).json()

    assert len(upstream.calls) == 1
    request = upstream.calls[0]
    assert request.url.path == '/top250'
    assert parse_qs(request.url.query.decode())['start'] == [str(params.get('pageStart', 0))]
    assert len(body['list']) == min(3, params.get('pageSize', 16))
    assert all(item['poster'].startswith('https://') for item in body['list'])


def test_top250_has_no_relay_fallback(client, upstream):
    upstream.on('movie.douban.com', timeout)
    upstream.on('api.allorigins.win', allorigins_response(TOP250_HTML))

    body = client.get('/resolve', params={'type': 'movie', 'tag': 'top250'}).json()

    assert body['list'] == []
    assert body['attempted'] == ['direct']
    assert upstream.hosts_called() == ['movie.douban.com']


def test_exhaustion_is_a_soft_failure(client, upstream):
    upstream.on('movie.douban.com', json_response('blocked', status_code=403))

    response = client.get('/resolve', params={'type': 'movie', 'tag': '热门'})

    assert response.status_code == 200
    body = response.json()
    assert body['code'] == 200
    assert body['list'] == []
    assert body['attempted'] == ['direct', 'allorigins', 'corsproxy']
    assert body['details']
    assert body['debug']['original_tag'] == '热门'
    assert response.headers['cache-control'] == 'no-store'


def test_tags_from_upstream(client, upstream):
    upstream.on('movie.douban.com', json_response('{"tags": ["热门", "最新", "经典"]}'))

    response = client.get('/resolve/tags', params={'type': 'jp_anime'})

    body = response.json()
    assert body['tags'] == ['热门', '最新', '经典']
    assert body['source'] == 'upstream'
    assert body['type'] == 'jp_anime'
    assert parse_qs(upstream.calls[0].url.query.decode()) == {'type': ['tv']}
    assert response.headers['cache-control'] == 'public, max-age=3600'


def test_tags_fall_back_when_upstream_fails(client):
    body = client.get('/resolve/tags', params={'type': 'variety'}).json()

    assert body['tags'] == FALLBACK_TAGS['variety']
    assert body['source'] == 'fallback'


def test_tags_fall_back_when_vocabulary_empty(client, upstream):
    upstream.on('movie.douban.com', json_response('{"tags": []}'))

    body = client.get('/resolve/tags', params={'type': 'movie'}).json()

    assert body['tags'] == FALLBACK_TAGS['movie']


def test_tags_reject_unknown_category(client):
    assert client.get('/resolve/tags', params={'type': 'music'}).status_code == 400
    assert client.get('/resolve/tags').status_code == 400


def test_proxy_relays_allowed_host(client, upstream):
    upstream.on('movie.douban.com', timeout)
    upstream.on('api.allorigins.win', allorigins_response('{"tags": ["热门"]}'))

    response = client.get('/proxy', params={'url': 'https://movie.douban.com/j/search_tags?type=movie'})

    assert response.status_code == 200
    assert response.json() == {'tags': ['热门']}
    assert response.headers['x-proxy-service'] == 'allorigins'


@pytest.mark.parametrize('url, status', [
    ('https://evil.example.com/j/search_tags', 403),
    ('https://douban.com.evil.example/', 403),
    ('ftp://movie.douban.com/', 400),
    ('not a url', 400),
    ('https://movie.douban.com:abc/x', 400),
])
def test_proxy_rejects_bad_targets(client, upstream, url, status):
    assert client.get('/proxy', params={'url': url}).status_code == status
    assert upstream.calls == []


def test_proxy_requires_url(client):
    assert client.get('/proxy').status_code == 400


def test_proxy_exhaustion_is_bad_gateway(client, upstream):
    response = client.get('/proxy', params={'url': 'https://movie.douban.com/j/search_tags?type=tv'})

    assert response.status_code == 502
    assert response.json()['attempted'] == ['direct', 'allorigins', 'cors-anywhere', 'thingproxy']


def test_proxy_non_finite_json_is_not_relayed(client, upstream):
    upstream.on('movie.douban.com', json_response('{"rate": NaN}'))

    response = client.get('/proxy', params={'url': 'https://movie.douban.com/j/search_tags?type=tv'})

    assert response.status_code == 502
    assert response.json()['attempted'] == ['direct', 'allorigins', 'cors-anywhere', 'thingproxy']


def test_upstream_check_reports_every_strategy(client, upstream):
    upstream.on('movie.douban.com', timeout)
    upstream.on('api.allorigins.win', allorigins_response(subjects_body(5)))
    upstream.on('corsproxy.io', json_response('busy', status_code=500))

    response = client.get('/resolve/test')

    assert response.status_code == 200
    assert response.headers['cache-control'] == 'no-store'
    body = response.json()
    assert body['success'] is True
    assert parse_qs(body['target'].split('?', 1)[1])['page_limit'] == ['5']

    reports = {r['name']: r for r in body['strategies']}
    assert list(reports) == ['direct', 'allorigins', 'corsproxy']
    assert reports['direct']['ok'] is False
    assert reports['direct']['status'] == 0
    assert 'Timeout' in reports['direct']['error']
    assert reports['allorigins']['ok'] is True
    assert reports['allorigins']['status'] == 200
    assert reports['allorigins']['items'] == 5
    assert reports['allorigins']['error'] is None
    assert reports['corsproxy']['ok'] is False
    assert reports['corsproxy']['status'] == 500
    assert all(r['elapsed'] >= 0 for r in reports.values())
    assert upstream.hosts_called() == ['movie.douban.com', 'api.allorigins.win', 'corsproxy.io']


def test_upstream_check_fails_when_no_strategy_works(client):
    body = client.get('/resolve/test').json()

    assert body['success'] is False
    assert all(not r['ok'] and r['error'] for r in body['strategies'])


def test_tag_preferences_lifecycle(client):
    headers = {'X-Client-Id': 'browser-1'}
    params = {'type': 'movie'}

    assert client.get('/preferences/tags', params=params, headers=headers).json()['tags'] == DEFAULT_TAGS['movie']

    added = client.post('/preferences/tags', params=params, headers=headers, json={'tag': 'Noir'})
    assert added.status_code == 200
    assert added.json()['tags'][-1] == 'Noir'

    duplicate = client.post('/preferences/tags', params=params, headers=headers, json={'tag': 'noir'})
    assert duplicate.status_code == 409

    assert client.delete('/preferences/tags/热门', params=params, headers=headers).status_code == 403

    removed = client.delete('/preferences/tags/Noir', params=params, headers=headers)
    assert 'Noir' not in removed.json()['tags']

    reset = client.post('/preferences/tags/reset', params=params, headers=headers)
    assert reset.json()['tags'] == DEFAULT_TAGS['movie']


def test_tag_preferences_are_per_client_and_category(client):
    client.post('/preferences/tags', params={'type': 'tv', 'category': 'kr_drama'},
                headers={'X-Client-Id': 'a'}, json={'tag': '古装'})

    mine = client.get('/preferences/tags', params={'type': 'tv', 'category': 'kr_drama'},
                      headers={'X-Client-Id': 'a'}).json()
    theirs = client.get('/preferences/tags', params={'type': 'tv', 'category': 'kr_drama'},
                        headers={'X-Client-Id': 'b'}).json()

    assert mine['tags'] == ['热门', '古装']
    assert theirs['tags'] == ['热门']
    assert mine['category'] == 'kr_drama'


def test_tag_preferences_reject_unknown_type(client):
    assert client.get('/preferences/tags', params={'type': 'music'}).status_code == 400
