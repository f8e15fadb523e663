import os
from time import time

import pytest
from starlette.requests import Request

from mediacheck import config
from mediacheck.security import (
    RateLimiter,
    RateLimitExceeded,
    SecurityState,
    detect_suspicious_activity,
    sanitize_data,
    sanitize_query_string,
    sanitize_value,
    security_state,
    suspicious_score,
)
from mediacheck.storage import AutoDeleteConfig, auto_delete_service


def make_request(path="/api/upload", headers=None, client=("203.0.113.7", 5000), method="GET", query=b""):
    scope = {
        "type": "http",
        "method": method,
        "path": path,
        "query_string": query,
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
        "server": ("testserver", 80),
        "scheme": "http",
    }
    return Request(scope)


class TestRateLimiter:
    def test_allows_up_to_limit(self):
        limiter = RateLimiter("test", 2, 60, "slow down")
        limiter.hit("a")
        limiter.hit("a")
        with pytest.raises(RateLimitExceeded) as exc_info:
            limiter.hit("a")
        assert exc_info.value.status_code == 429
        assert exc_info.value.retry_after == 60
        assert exc_info.value.message == "slow down"

    def test_clients_are_independent(self):
        limiter = RateLimiter("test", 1, 60, "slow down")
        limiter.hit("a")
        limiter.hit("b")

    def test_release_forgets_last_request(self):
        limiter = RateLimiter("test", 1, 60, "slow down")
        limiter.hit("a")
        limiter.release("a")
        limiter.hit("a")

    def test_window_expiry(self, monkeypatch):
        now = [1000.0]
        monkeypatch.setattr("mediacheck.security.monotonic", lambda: now[0])
        limiter = RateLimiter("test", 1, 60, "slow down")
        limiter.hit("a")
        now[0] += 61
        limiter.hit("a")

    @pytest.mark.asyncio
    async def test_repeated_violations_block_ip(self):
        limiter = RateLimiter("test", 1, 60, "slow down")
        request = make_request()
        await limiter(request)

        for _ in range(5):
            with pytest.raises(RateLimitExceeded):
                await limiter(request)
        assert not security_state.is_blocked("203.0.113.7")

        with pytest.raises(RateLimitExceeded):
            await limiter(request)
        assert security_state.is_blocked("203.0.113.7")


class TestSecurityState:
    def test_record_returns_previous_count(self):
        state = SecurityState()
        assert state.record_suspicious("1.1.1.1") == 0
        assert state.record_suspicious("1.1.1.1") == 1
        assert state.suspicious_count("1.1.1.1") == 2

    def test_unblock_clears_counter(self):
        state = SecurityState()
        state.record_suspicious("1.1.1.1")
        state.block("1.1.1.1")
        assert state.unblock("1.1.1.1") is True
        assert state.suspicious_count("1.1.1.1") == 0
        assert state.unblock("1.1.1.1") is False

    def test_stats(self):
        state = SecurityState()
        state.block("1.1.1.1")
        state.record_suspicious("2.2.2.2")
        state.record_suspicious("2.2.2.2")
        stats = state.stats()
        assert stats["blocked_ips"] == ["1.1.1.1"]
        assert stats["total_blocked_ips"] == 1
        assert stats["total_suspicious_requests"] == 2

        state.clear_counters()
        assert state.stats()["total_suspicious_requests"] == 0
        assert state.is_blocked("1.1.1.1")


class TestSuspiciousActivity:
    def test_normal_browser_request_scores_zero(self):
        request = make_request(headers={"User-Agent": "Mozilla/5.0 (X11; Linux x86_64)"})
        assert suspicious_score(request) == (0, [])

    def test_scores_add_up(self):
        request = make_request(
            path="/admin",
            headers={"User-Agent": "curl/8.5", "X-Forwarded-For": "10.0.0.1"},
        )
        score, indicators = suspicious_score(request)
        assert score == 2 + 1 + 4
        assert "Suspicious User-Agent" in indicators
        assert "Proxy headers present" in indicators

    def test_missing_user_agent_and_large_body(self):
        request = make_request(headers={"Content-Length": str(200 * 1024 * 1024)})
        score, indicators = suspicious_score(request)
        assert score == 3 + 3
        assert "Missing User-Agent" in indicators

    def test_blocks_in_production(self, monkeypatch):
        monkeypatch.setattr("mediacheck.config.ENVIRONMENT", "production")
        request = make_request(path="/.env", headers={"User-Agent": "python-requests/2.31"})
        response = detect_suspicious_activity(request)
        assert response.status_code == 403
        assert security_state.is_blocked("203.0.113.7")

    def test_higher_threshold_outside_production(self):
        request = make_request(path="/.env", headers={"User-Agent": "python-requests/2.31"})
        assert detect_suspicious_activity(request) is None
        assert not security_state.is_blocked("203.0.113.7")

    def test_loopback_not_blocked_outside_production(self):
        request = make_request(
            path="/backup",
            headers={"X-Real-IP": "1.2.3.4", "Content-Length": str(101 * 1024 * 1024)},
            client=("127.0.0.1", 5000),
        )
        response = detect_suspicious_activity(request)
        assert response.status_code == 403
        assert not security_state.is_blocked("127.0.0.1")


class TestSanitize:
    def test_strips_script_blocks(self):
        assert sanitize_value("<script>alert(1)</script>hello") == "hello"

    def test_strips_javascript_protocol_and_handlers(self):
        assert sanitize_value("javascript:alert(1)") == "alert(1)"
        assert sanitize_value('<img onerror="x">') == '<img "x">'

    def test_nested_data(self):
        data = {"a": ["<script>x</script>ok", 3], "b": {"c": "onclick=go"}}
        assert sanitize_data(data) == {"a": ["ok", 3], "b": {"c": "go"}}

    def test_query_string(self):
        raw = b"q=%3Cscript%3Ex%3C%2Fscript%3Eok&n=1"
        assert sanitize_query_string(raw) == b"q=ok&n=1"

    def test_json_body_is_sanitized_before_routing(self, client):
        r = client.post("/api/security/unblock-ip", json={"ip": "<script>x</script>198.51.100.1"})
        assert r.status_code == 404
        assert r.json()["details"]["ip"] == "198.51.100.1"


def test_security_headers(client):
    r = client.get("/api/health")
    assert r.headers["X-Frame-Options"] == "DENY"
    assert r.headers["X-Content-Type-Options"] == "nosniff"
    assert "default-src 'self'" in r.headers["Content-Security-Policy"]
    assert r.headers["Strict-Transport-Security"].startswith("max-age=31536000")


def test_blocked_ip_rejected_in_production(client, monkeypatch):
    monkeypatch.setattr("mediacheck.config.ENVIRONMENT", "production")
    security_state.block("testclient")
    r = client.get("/api/health")
    assert r.status_code == 403
    assert r.json()["code"] == "IP_BLOCKED"


def test_csrf_in_production(client, monkeypatch):
    monkeypatch.setattr("mediacheck.config.ENVIRONMENT", "production")
    r = client.post("/api/performance/reset-metrics", json={})
    assert r.status_code == 403
    assert r.json()["code"] == "CSRF_PROTECTION"

    r = client.post("/api/performance/reset-metrics", json={}, headers={"Origin": "http://evil.example"})
    assert r.status_code == 403

    r = client.post("/api/performance/reset-metrics", json={}, headers={"Origin": "http://testserver"})
    assert r.status_code == 200


def test_diagnostics_closed_in_production(client, monkeypatch):
    monkeypatch.setattr("mediacheck.config.ENVIRONMENT", "production")
    r = client.get("/api/security/stats")
    assert r.status_code == 403
    assert r.json()["code"] == "ACCESS_DENIED"
    assert "stack" not in r.json()


def test_security_stats(client):
    security_state.block("192.0.2.10")
    r = client.get("/api/security/stats")
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["security"]["blocked_ips"] == ["192.0.2.10"]
    assert data["cleanup"]["is_running"] is True


def test_unblock_ip(client):
    security_state.block("192.0.2.10")
    r = client.post("/api/security/unblock-ip", json={"ip": "192.0.2.10"})
    assert r.status_code == 200
    assert not security_state.is_blocked("192.0.2.10")


def test_cleanup_now_removes_stale_uploads(client):
    stale = config.UPLOAD_DIR / "file-1-1.png"
    stale.write_bytes(b"old")
    old = time() - 2 * 60 * 60
    os.utime(stale, (old, old))
    fresh = config.UPLOAD_DIR / "file-2-2.png"
    fresh.write_bytes(b"new")

    r = client.post("/api/security/cleanup-now")
    assert r.status_code == 200
    assert r.json()["data"]["deleted_files"] == 1
    assert not stale.exists()
    assert fresh.exists()


def test_configure_cleanup(client, monkeypatch):
    monkeypatch.setattr(auto_delete_service, "config", AutoDeleteConfig())
    r = client.post("/api/security/configure-cleanup", json={"max_age": 10, "check_interval": 2})
    assert r.status_code == 200
    assert r.json()["data"] == {"max_age": 10, "max_files": 100, "check_interval": 2}
    job = client.app.state.scheduler.get_job(auto_delete_service.JOB_ID)
    assert job.trigger.interval.total_seconds() == 120

    r = client.post("/api/security/configure-cleanup", json={"max_age": 0})
    assert r.status_code == 400
    assert r.json()["code"] == "INVALID_MAX_AGE"


def test_security_health(client):
    r = client.get("/api/security/health")
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "healthy"

    for i in range(11):
        security_state.block(f"192.0.2.{i}")
    r = client.get("/api/security/health")
    assert r.json()["data"]["status"] == "warning"
    assert r.json()["data"]["warnings"] == ["Many blocked IP addresses"]
