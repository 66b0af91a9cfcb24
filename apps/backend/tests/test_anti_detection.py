"""
Tests for header rotation and bot-block detection.
"""

import random

from core.anti_detection import AntiDetection, USER_AGENTS, DELAY_MIN_SECONDS, DELAY_MAX_SECONDS


def test_headers_look_like_a_browser():
    headers = AntiDetection(rng=random.Random(1)).get_headers('https://careers.acme.com/jobs')
    assert headers['User-Agent'] in USER_AGENTS
    assert headers['Accept'].startswith('text/html')
    assert headers['Sec-Fetch-Mode'] == 'navigate'


def test_referer_probability():
    always = AntiDetection(referer_probability=1.0, rng=random.Random(2))
    never = AntiDetection(referer_probability=0.0, rng=random.Random(2))

    headers = always.get_headers('https://careers.acme.com/jobs')
    assert headers['Referer'] == 'https://www.google.com/search?q=careers.acme.com+careers'
    assert 'Referer' not in never.get_headers('https://careers.acme.com/jobs')


def test_random_delay_clamped():
    anti = AntiDetection(rng=random.Random(3))
    delays = [anti.get_random_delay() for _ in range(500)]
    assert all(DELAY_MIN_SECONDS <= d <= DELAY_MAX_SECONDS for d in delays)
    assert 2.5 < sum(delays) / len(delays) < 4.5


def test_bot_detection():
    anti = AntiDetection()
    assert anti.is_bot_detected(403) is True
    assert anti.is_bot_detected(429) is True
    assert anti.is_bot_detected(503, {'CF-Ray': '8a1b2c'}) is True
    assert anti.is_bot_detected(200, {'content-type': 'text/html'}) is False
    assert anti.is_bot_detected(500) is False


def test_cdn_header_alone_is_not_a_block():
    anti = AntiDetection()
    assert anti.is_bot_detected(404, {'cf-ray': '8a1b-IAD'}) is False
    assert anti.is_bot_detected(500, {'cf-ray': '8a1b-IAD'}, 'Internal Server Error') is False
    assert anti.is_bot_detected(200, {'X-Protected-By': 'Sqreen'}) is False


def test_challenge_signals():
    anti = AntiDetection()
    assert anti.is_bot_detected(404, {'cf-mitigated': 'challenge'}) is True
    assert anti.is_bot_detected(400, {'x-protected-by': 'Sqreen'}, '<h1>Security check</h1>') is True
    assert anti.is_bot_detected(500, {'cf-ray': 'abc'}, 'Please complete the CAPTCHA') is True
    assert anti.is_bot_detected(404, {}, 'captcha') is False


def test_proxy_rotation():
    proxies = [{'host': 'p1', 'port': 8080}, {'host': 'p2', 'port': 8080}]
    anti = AntiDetection(proxies=proxies)
    hosts = [anti.get_next_proxy()['host'] for _ in range(3)]
    assert hosts == ['p1', 'p2', 'p1']
    assert AntiDetection().get_next_proxy() is None


def test_browser_fingerprint():
    fingerprint = AntiDetection(rng=random.Random(4)).get_browser_fingerprint()
    assert fingerprint['screen']['width'] >= 1366
    assert fingerprint['timezone'] == 'America/New_York'
    assert fingerprint['languages'] == ['en-US', 'en']
