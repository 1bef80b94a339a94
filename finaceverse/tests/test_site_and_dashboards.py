import io
import json
import re
import uuid
from urllib.error import URLError
from urllib.parse import parse_qs, urlsplit

import pytest
from PIL import Image

from finaceverse import create_app, newsletter
from finaceverse.api_client import BackendClient
from finaceverse.models import Article, AuthRateLimitBucket, db
from finaceverse.polling import ANALYTICS_TARGETS, SEO_TARGETS
from finaceverse.rendering import reading_time
from finaceverse.routes import analytics as analytics_routes
from finaceverse.routes import seo as seo_routes

CSRF_TOKEN_RE = re.compile(r'name="_csrf_token" value="([^"]+)"')
VAULT = "/vault"

SUMMARY = {
    "totalVisits": 1234,
    "visits24h": 12,
    "visits7d": 345,
    "totalEvents": 5678,
    "totalErrors": 2,
    "uniqueCountries": 9,
}


def extract_csrf_token(html):
    match = CSRF_TOKEN_RE.search(html or "")
    return match.group(1) if match else None


class FakeBackend:
    """Routes keyed by (method, path); anything unrouted behaves like a dead backend."""

    def __init__(self):
        self.routes = {}
        self.calls = []

    def route(self, method, path, payload=None, status=200):
        self.routes[(method, path)] = (status, payload if payload is not None else {})

    def calls_to(self, method, path):
        return [call for call in self.calls if call["method"] == method and call["path"] == path]

    def handle(self, req):
        parts = urlsplit(req.full_url)
        body = json.loads(req.data.decode("utf-8")) if req.data else None
        self.calls.append({
            "method": req.get_method(),
            "path": parts.path,
            "query": parse_qs(parts.query),
            "body": body,
            "authorization": req.get_header("Authorization"),
        })
        key = (req.get_method(), parts.path)
        if key not in self.routes:
            raise URLError("backend offline")
        status, payload = self.routes[key]
        if callable(payload):
            status, payload = payload(body)
        return status, json.dumps(payload).encode("utf-8")


@pytest.fixture(autouse=True)
def backend(monkeypatch):
    fake = FakeBackend()
    monkeypatch.setattr(BackendClient, "_send", lambda client, req: fake.handle(req))
    return fake


def build_test_app(tmp_path, monkeypatch, overrides=None):
    db_path = tmp_path / f"site_test_{uuid.uuid4().hex[:8]}.db"
    upload_path = tmp_path / f"uploads_{uuid.uuid4().hex[:8]}"

    config = {
        "TESTING": True,
        "SECRET_KEY": "test-secret-key",
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
        "UPLOAD_FOLDER": str(upload_path),
        "BACKEND_API_URL": "http://backend.test",
        "VAULT_URL_PREFIX": VAULT,
        "MAILGUN_API_KEY": "",
        "LOG_JSON": False,
    }
    if overrides:
        config.update(overrides)

    app = create_app(config)
    with app.app_context():
        AuthRateLimitBucket.query.delete()
        db.session.commit()
    return app


@pytest.fixture()
def app(tmp_path, monkeypatch):
    return build_test_app(tmp_path, monkeypatch)


@pytest.fixture()
def client(app):
    return app.test_client()


def csrf_from(client, path):
    page = client.get(path)
    token = extract_csrf_token(page.get_data(as_text=True))
    assert token
    return token


def analytics_login(client, backend):
    backend.route("POST", "/api/auth/login", {"token": "analytics-token", "username": "ana"})
    token = csrf_from(client, "/analytics/login")
    response = client.post(
        "/analytics/login",
        data={"_csrf_token": token, "username": "ana", "password": "secret"},
        follow_redirects=False,
    )
    assert response.status_code in (302, 303)
    assert response.headers["Location"].endswith("/analytics/dashboard")
    return token


def vault_login(client, backend):
    backend.route("POST", "/api/superadmin/login", {"accessToken": "admin-token", "refreshToken": "refresh"})
    token = csrf_from(client, VAULT)
    response = client.post(
        VAULT,
        data={"_csrf_token": token, "master_key": "master", "password": "secret"},
        follow_redirects=False,
    )
    assert response.status_code in (302, 303)
    assert response.headers["Location"].endswith(f"{VAULT}/dashboard")
    return token


def tiny_png():
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), (79, 70, 229)).save(buffer, format="PNG")
    buffer.seek(0)
    return buffer


# Public site
def test_public_pages_and_security_headers(client):
    response = client.get("/")
    assert response.status_code == 200
    csp = response.headers.get("Content-Security-Policy", "")
    assert "script-src 'self' 'nonce-" in csp
    assert "'unsafe-inline'" not in csp
    assert response.headers.get("X-Frame-Options") == "DENY"
    assert response.headers.get("X-Content-Type-Options") == "nosniff"
    assert response.headers.get("Cross-Origin-Resource-Policy") == "same-origin"
    assert response.headers.get("X-Request-ID")
    assert "X-Robots-Tag" not in response.headers
    html = response.get_data(as_text=True)
    assert 'href="#main-content"' in html
    assert 'id="main-content"' in html
    assert '<script nonce="' in html
    assert "style=" not in html
    assert "The Cognitive Operating System for Finance" in html

    for path in [
        "/modules",
        "/modules?view=vision",
        "/cognitive-finance",
        "/compliance-privacy",
        "/expert-consultation",
        "/tailored-pilots",
        "/request-demo",
        "/blog",
        "/unsubscribe",
    ]:
        page = client.get(path)
        assert page.status_code == 200, path
        assert "style=" not in page.get_data(as_text=True), path


def test_private_areas_are_not_indexed(client):
    for path in ["/analytics/login", VAULT]:
        response = client.get(path)
        assert response.status_code == 200
        assert response.headers.get("X-Robots-Tag") == "noindex, nofollow, noarchive"


def test_hsts_header_on_https_requests(client):
    response = client.get("/", base_url="https://example.com")
    assert response.headers.get("Strict-Transport-Security") == "max-age=31536000; includeSubDomains"


def test_request_id_is_echoed_when_well_formed(client):
    response = client.get("/healthz", headers={"X-Request-ID": "req-abc-12345"})
    assert response.headers.get("X-Request-ID") == "req-abc-12345"
    replaced = client.get("/healthz", headers={"X-Request-ID": "bad id"})
    assert replaced.headers.get("X-Request-ID") != "bad id"


def test_health_and_readiness(client):
    assert client.get("/healthz").get_json() == {"status": "ok"}
    ready = client.get("/readyz")
    assert ready.status_code == 200
    assert ready.get_json()["checks"] == {
        "database": True,
        "site_settings_seeded": True,
        "articles_seeded": True,
    }


def test_missing_page_renders_404(client):
    response = client.get("/definitely-not-here")
    assert response.status_code == 404
    assert "style=" not in response.get_data(as_text=True)


def test_post_without_csrf_token_is_rejected(client):
    response = client.post("/analytics/login", data={"username": "a", "password": "b"})
    assert response.status_code in (302, 303)

    json_response = client.post(
        "/analytics/login",
        data={"username": "a", "password": "b"},
        headers={"Accept": "application/json"},
    )
    assert json_response.status_code == 400
    assert json_response.get_json()["success"] is False


def test_modules_fall_back_to_static_catalogue(client, backend):
    response = client.get("/modules")
    html = response.get_data(as_text=True)
    assert response.status_code == 200
    for name in ["Accute", "Cyloid", "Luca", "Finaid Hub", "EPI-Q", "VAMN", "Finory"]:
        assert name in html
    assert "product-status-badge" not in html
    assert backend.calls_to("GET", "/api/products")[0]["query"] == {"view": ["current"]}


def test_modules_render_backend_products_and_content(client, backend):
    backend.route("GET", "/api/products", {"products": [
        {"name": "Luca", "status": "planned", "display_order": 2, "external_url": "https://askluca.io"},
        {"name": "Accute", "status": "launched", "display_order": 1, "external_url": "https://accute.io"},
    ]})
    backend.route("GET", "/api/content/modules", {"content": [
        {"page": "modules", "section": "hero", "content_key": "title",
         "content_value": "Seven Modules, One Brain", "content_type": "text"},
        {"page": "modules", "section": "cta", "content_key": "bundles",
         "content_value": '["Starter", "Scale"]', "content_type": "json"},
    ]})
    html = client.get("/modules?view=vision").get_data(as_text=True)
    assert "Seven Modules, One Brain" in html
    assert "Live" in html
    assert "In Development" in html
    assert html.index("https://accute.io") < html.index("https://askluca.io")
    assert "Finory" not in html
    assert "<li>Starter</li>" in html
    assert "Capabilities That Compound" in html


def test_blog_listing_article_and_unknown_slug(client):
    listing = client.get("/blog?category=industry-insights")
    assert listing.status_code == 200
    assert "Why Cognitive Operating Systems Are the Future of Finance" in listing.get_data(as_text=True)

    article = client.get("/blog/why-cognitive-operating-systems-are-future")
    assert article.status_code == 200
    html = article.get_data(as_text=True)
    assert "<h2>The End of Record-Keeping Software</h2>" in html
    assert "<strong>The software hasn&#39;t kept up.</strong>" in html or "<strong>The software hasn't kept up.</strong>" in html

    missing = client.get("/blog/not-a-real-post", follow_redirects=False)
    assert missing.status_code in (302, 303)
    assert missing.headers["Location"].endswith("/blog")


def test_seeded_articles_carry_computed_reading_time(app):
    with app.app_context():
        articles = Article.query.all()
        assert articles
        for article in articles:
            assert article.read_minutes == reading_time(article.content)


def test_sitemap_and_robots(client):
    sitemap = client.get("/sitemap.xml").get_data(as_text=True)
    assert "/blog/why-cognitive-operating-systems-are-future</loc>" in sitemap
    assert "/tailored-pilots</loc>" in sitemap
    robots = client.get("/robots.txt").get_data(as_text=True)
    assert f"Disallow: {VAULT}" in robots
    assert "Sitemap: " in robots


# Newsletter
def test_mailgun_api_validates_input_without_csrf(client):
    bad_email = client.post("/api/mailgun", json={"action": "subscribe", "email": "nope"})
    assert bad_email.status_code == 400
    assert bad_email.get_json()["message"] == "Valid email is required"

    bad_action = client.post("/api/mailgun", json={"action": "explode", "email": "cpa@example.com"})
    assert bad_action.status_code == 400
    assert "Invalid action" in bad_action.get_json()["message"]

    unconfigured = client.post("/api/mailgun", json={"action": "subscribe", "email": "cpa@example.com"})
    assert unconfigured.status_code == 400
    assert unconfigured.get_json() == {"success": False, "message": "Newsletter service is not configured."}


@pytest.mark.parametrize("body", [["x"], "subscribe", 42, {"action": "subscribe", "email": 12345}])
def test_mailgun_api_rejects_malformed_json(client, body):
    response = client.post("/api/mailgun", json=body)
    assert response.status_code == 400
    assert response.get_json() == {"success": False, "message": "Valid email is required"}


def test_mailgun_subscribe_calls_list_members_endpoint(tmp_path, monkeypatch):
    app = build_test_app(tmp_path, monkeypatch, {
        "MAILGUN_API_KEY": "key-test",
        "MAILGUN_MAILING_LIST": "newsletter@finaceverse.io",
    })
    sent = []

    def fake_open(req):
        sent.append(req)
        return 200, b'{"message": "Mailing list member has been created"}'

    monkeypatch.setattr(newsletter, "_open", fake_open)
    response = app.test_client().post(
        "/api/mailgun", json={"action": "subscribe", "email": "cpa@example.com", "name": "Pat"}
    )
    assert response.status_code == 200
    assert response.get_json() == {"success": True, "message": "Successfully subscribed to newsletter"}
    req = sent[0]
    assert req.get_method() == "POST"
    assert req.full_url == "https://api.mailgun.net/v3/lists/newsletter%40finaceverse.io/members"
    fields = parse_qs(req.data.decode("utf-8"))
    assert fields["address"] == ["cpa@example.com"]
    assert fields["upsert"] == ["yes"]
    assert req.get_header("Authorization").startswith("Basic ")


def test_mailgun_status_reports_missing_member(tmp_path, monkeypatch):
    app = build_test_app(tmp_path, monkeypatch, {"MAILGUN_API_KEY": "key-test"})
    monkeypatch.setattr(newsletter, "_open", lambda req: (404, b'{"message": "Member not found"}'))
    response = app.test_client().post("/api/mailgun", json={"action": "status", "email": "cpa@example.com"})
    assert response.status_code == 200
    assert response.get_json() == {"success": True, "subscribed": False}


def test_mailgun_api_is_rate_limited(tmp_path, monkeypatch):
    app = build_test_app(tmp_path, monkeypatch, {"NEWSLETTER_FORM_LIMIT": 2})
    client = app.test_client()
    for _ in range(2):
        assert client.post("/api/mailgun", json={"action": "status", "email": "cpa@example.com"}).status_code == 400
    limited = client.post("/api/mailgun", json={"action": "status", "email": "cpa@example.com"})
    assert limited.status_code == 429
    assert "Too many requests" in limited.get_json()["message"]


def test_unsubscribe_form_removes_member(tmp_path, monkeypatch):
    app = build_test_app(tmp_path, monkeypatch, {"MAILGUN_API_KEY": "key-test"})
    sent = []
    monkeypatch.setattr(newsletter, "_open", lambda req: sent.append(req) or (200, b"{}"))
    client = app.test_client()
    token = csrf_from(client, "/unsubscribe?email=cpa@example.com")
    response = client.post("/unsubscribe", data={"_csrf_token": token, "email": "cpa@example.com"})
    assert response.status_code == 200
    assert "You have been unsubscribed" in response.get_data(as_text=True)
    assert sent[0].get_method() == "DELETE"
    assert sent[0].full_url.endswith("/members/cpa%40example.com")

    invalid = client.post("/unsubscribe", data={"_csrf_token": token, "email": "not-an-email"})
    assert invalid.status_code == 400


# Analytics dashboard
def test_analytics_requires_login(client):
    response = client.get("/analytics/dashboard", follow_redirects=False)
    assert response.status_code in (302, 303)
    assert response.headers["Location"].endswith("/analytics/login")
    data = client.get("/analytics/dashboard/data")
    assert data.status_code == 401
    assert data.get_json()["redirect"].endswith("/analytics/login")


def test_analytics_login_failure_shows_backend_message(client, backend):
    backend.route("POST", "/api/auth/login", {"error": "Invalid credentials"}, status=401)
    token = csrf_from(client, "/analytics/login")
    response = client.post("/analytics/login", data={"_csrf_token": token, "username": "ana", "password": "x"})
    assert response.status_code == 401
    assert "Invalid credentials" in response.get_data(as_text=True)
    with client.session_transaction() as sess:
        assert "analytics_token" not in sess


def test_analytics_dashboard_renders_summary_with_bearer_token(client, backend):
    analytics_login(client, backend)
    backend.route("GET", "/api/analytics/summary", SUMMARY)
    backend.route("GET", "/api/analytics/performance", {"summary": {"avgLCP": 2100, "totalSamples": 40}})
    backend.route("GET", "/api/analytics/errors", {"data": []})

    response = client.get("/analytics/dashboard")
    assert response.status_code == 200
    html = response.get_data(as_text=True)
    assert "1,234" in html
    assert "2.10s" in html
    assert "Signed in as ana" in html
    assert "Some analytics panels could not be refreshed." in html
    summary_call = backend.calls_to("GET", "/api/analytics/summary")[0]
    assert summary_call["authorization"] == "Bearer analytics-token"


def test_analytics_summary_401_clears_token_and_redirects(client, backend):
    analytics_login(client, backend)
    backend.route("GET", "/api/analytics/summary", {"error": "Token expired"}, status=401)
    backend.route("GET", "/api/analytics/geography", {"byCountry": []})

    response = client.get("/analytics/dashboard", follow_redirects=False)
    assert response.status_code in (302, 303)
    assert response.headers["Location"].endswith("/analytics/login")
    with client.session_transaction() as sess:
        assert "analytics_token" not in sess
        assert "analytics_user" not in sess


def test_analytics_data_endpoint_keeps_failed_slots_empty(client, backend):
    analytics_login(client, backend)
    backend.route("GET", "/api/analytics/summary", SUMMARY)
    response = client.get("/analytics/dashboard/data")
    assert response.status_code == 200
    payload = response.get_json()
    assert payload["slots"]["summary"] == SUMMARY
    assert payload["slots"]["geography"] is None
    assert sorted(payload["failed"]) == ["errors", "geography", "performance"]
    assert payload["unauthorized"] is False

    backend.route("GET", "/api/analytics/summary", {}, status=403)
    expired = client.get("/analytics/dashboard/data")
    assert expired.status_code == 401
    assert expired.get_json()["redirect"].endswith("/analytics/login")


def test_analytics_data_endpoint_renders_active_tab_panel(client, backend):
    analytics_login(client, backend)
    backend.route("GET", "/api/analytics/summary", SUMMARY)
    geography = {"byCountry": [{"_id": "Portugal", "count": 4321}], "byCity": []}

    stale = client.get("/analytics/dashboard/data?tab=geography").get_json()
    assert stale["tab"] == "geography"
    assert stale["html"] is None

    backend.route("GET", "/api/analytics/geography", geography)
    payload = client.get("/analytics/dashboard/data?tab=geography").get_json()
    assert set(payload["slots"]) == {target.slot for target in ANALYTICS_TARGETS}
    assert payload["slots"]["geography"] == geography
    assert "Portugal" in payload["html"]
    assert "4,321 visits" in payload["html"]
    assert "data-slot" not in payload["html"]

    backend.route("GET", "/api/analytics/performance", {"summary": {"avgLCP": 2100, "totalSamples": 40}})
    overview = client.get("/analytics/dashboard/data?tab=overview").get_json()
    assert "1,234" in overview["html"]
    assert "2.10s" in overview["html"]

    page = client.get("/analytics/dashboard?tab=geography").get_data(as_text=True)
    assert 'data-poll-url="/analytics/dashboard/data?tab=geography"' in page
    assert "data-panel" in page
    assert "Portugal" in page


def test_dashboard_panels_only_read_polled_slots():
    polled = {target.slot for target in ANALYTICS_TARGETS}
    for slots in analytics_routes.PANEL_SLOTS.values():
        assert set(slots) <= polled
    polled = {target.slot for target in SEO_TARGETS}
    for slots in seo_routes.PANEL_SLOTS.values():
        assert set(slots) <= polled
    assert set(seo_routes.PANEL_SLOTS) | {"optimize"} == set(seo_routes.SEO_TABS)
    assert set(analytics_routes.PANEL_SLOTS) == set(analytics_routes.DASHBOARD_TABS)


def test_analytics_live_feed_snapshot(app, client, backend):
    assert client.get("/analytics/live").status_code == 401
    analytics_login(client, backend)
    feed = app.extensions["live_feed"]
    feed.apply_event({"type": "visit", "data": {"page": "/modules", "country": "India"}})
    feed.apply_event({"type": "summary", "data": {"totalVisits": 3}})
    payload = client.get("/analytics/live").get_json()
    assert payload["visits"] == [{"page": "/modules", "country": "India"}]
    assert payload["summary"] == {"totalVisits": 3}
    assert payload["connected"] is False


def test_analytics_logout_clears_session(client, backend):
    token = analytics_login(client, backend)
    response = client.post("/analytics/logout", data={"_csrf_token": token})
    assert response.status_code in (302, 303)
    with client.session_transaction() as sess:
        assert "analytics_token" not in sess


def test_watch_analytics_cli_prints_summary(app, backend):
    backend.route("GET", "/api/analytics/summary", SUMMARY)
    result = app.test_cli_runner().invoke(
        args=["watch-analytics", "--token", "cli-token", "--interval", "0.05", "--cycles", "1"]
    )
    assert result.exit_code == 0, result.output
    assert "visits=1,234 24h=12 7d=345 events=5,678 errors=2 countries=9" in result.output
    assert backend.calls_to("GET", "/api/analytics/summary")[0]["authorization"] == "Bearer cli-token"


def test_watch_analytics_cli_stops_on_rejected_token(app, backend):
    backend.route("GET", "/api/analytics/summary", {"error": "nope"}, status=401)
    result = app.test_cli_runner().invoke(args=["watch-analytics", "--token", "bad", "--interval", "0.05"])
    assert result.exit_code == 0
    assert "Token rejected by the analytics backend." in result.output


# Vault authentication
def test_vault_pages_require_login(client):
    for path in [f"{VAULT}/dashboard", f"{VAULT}/content", f"{VAULT}/blog", f"{VAULT}/products", "/seo-dashboard"]:
        response = client.get(path, follow_redirects=False)
        assert response.status_code in (302, 303), path
        assert urlsplit(response.headers["Location"]).path == VAULT, path


def test_vault_login_stores_tokens(client, backend):
    vault_login(client, backend)
    with client.session_transaction() as sess:
        assert sess["superadmin_token"] == "admin-token"
        assert sess["superadmin_refresh"] == "refresh"
    assert client.get(f"{VAULT}/dashboard").status_code == 200
    login_call = backend.calls_to("POST", "/api/superadmin/login")[0]
    assert login_call["body"] == {"masterKey": "master", "password": "secret"}


def test_vault_login_rejects_non_object_response(client, backend):
    backend.route("POST", "/api/superadmin/login", [])
    token = csrf_from(client, VAULT)
    response = client.post(VAULT, data={"_csrf_token": token, "master_key": "master", "password": "secret"})
    assert response.status_code in (302, 303)
    assert urlsplit(response.headers["Location"]).path == VAULT
    with client.session_transaction() as sess:
        assert "superadmin_token" not in sess
    assert "Authentication failed" in client.get(VAULT).get_data(as_text=True)


def test_vault_login_with_totp_step(client, backend):
    def login(body):
        if body.get("totpCode") == "123456":
            return 200, {"accessToken": "admin-token", "refreshToken": "refresh"}
        return 200, {"requiresTotp": True}

    backend.route("POST", "/api/superadmin/login", login)
    token = csrf_from(client, VAULT)
    first = client.post(VAULT, data={"_csrf_token": token, "master_key": "master", "password": "secret"})
    assert first.status_code in (302, 303)
    assert first.headers["Location"].endswith(f"{VAULT}/totp")

    bad_code = client.post(f"{VAULT}/totp", data={"_csrf_token": token, "totp_code": "12ab"})
    assert bad_code.status_code == 400

    second = client.post(f"{VAULT}/totp", data={"_csrf_token": token, "totp_code": "123456"})
    assert second.status_code in (302, 303)
    assert second.headers["Location"].endswith(f"{VAULT}/dashboard")
    with client.session_transaction() as sess:
        assert sess["superadmin_token"] == "admin-token"
        assert "masterKey" not in sess
        assert "adminPassword" not in sess
    assert backend.calls_to("POST", "/api/superadmin/login")[-1]["body"] == {
        "masterKey": "master",
        "password": "secret",
        "totpCode": "123456",
    }


def test_vault_totp_without_pending_login_redirects(client):
    response = client.get(f"{VAULT}/totp", follow_redirects=False)
    assert response.status_code in (302, 303)
    assert urlsplit(response.headers["Location"]).path == VAULT


def test_vault_login_failures_are_rate_limited(client, backend):
    backend.route("POST", "/api/superadmin/login", {"error": "Invalid credentials"}, status=401)
    token = csrf_from(client, VAULT)
    for _ in range(5):
        response = client.post(VAULT, data={"_csrf_token": token, "master_key": "m", "password": "p"})
        assert response.status_code == 401
        assert "Invalid credentials" in response.get_data(as_text=True)
    blocked = client.post(VAULT, data={"_csrf_token": token, "master_key": "m", "password": "p"})
    assert blocked.status_code == 429


def test_vault_logout_clears_session(client, backend):
    token = vault_login(client, backend)
    response = client.post(f"{VAULT}/logout", data={"_csrf_token": token})
    assert response.status_code in (302, 303)
    with client.session_transaction() as sess:
        assert "superadmin_token" not in sess
    assert client.get(f"{VAULT}/dashboard", follow_redirects=False).status_code in (302, 303)


# Vault content editor
def test_content_editor_lists_sections(client, backend):
    vault_login(client, backend)
    html = client.get(f"{VAULT}/content").get_data(as_text=True)
    assert f"{VAULT}/content/modules/timeline" in html
    assert f"{VAULT}/content/home/stats" in html
    assert client.get(f"{VAULT}/content/modules/nope").status_code == 404


def test_content_editor_shows_defaults_when_store_is_empty(client, backend):
    vault_login(client, backend)
    backend.route("GET", "/api/admin/content", {"content": []})
    response = client.get(f"{VAULT}/content/modules/timeline")
    assert response.status_code == 200
    html = response.get_data(as_text=True)
    assert 'name="item_count" value="4"' in html
    assert 'name="items-3-title"' in html
    assert 'value="Discovery"' in html
    assert "style=" not in html


def test_content_editor_marks_required_inputs(client, backend):
    vault_login(client, backend)
    backend.route("GET", "/api/admin/content", {"content": []})
    html = client.get(f"{VAULT}/content/modules/timeline").get_data(as_text=True)
    assert 'name="items-0-title" value="Discovery" required' in html
    assert 'name="items-0-description" rows="4" maxlength="600"' in html
    assert 'type="submit" formnovalidate name="action" value="remove:0"' in html
    assert 'type="submit" formnovalidate name="action" value="add"' in html


def test_content_editor_saves_array_with_display_order(client, backend):
    token = vault_login(client, backend)
    backend.route("POST", "/api/admin/content/bulk", {"success": True})
    response = client.post(f"{VAULT}/content/modules/timeline", data={
        "_csrf_token": token,
        "action": "save",
        "item_count": "2",
        "items-0-title": "Kickoff",
        "items-0-description": "Scope the pilot",
        "items-0-time": "Week 1",
        "items-1-title": "Rollout",
        "items-1-description": "Expand to every team",
        "items-1-time": "Week 6",
    })
    assert response.status_code in (302, 303)
    saved = backend.calls_to("POST", "/api/admin/content/bulk")[0]["body"]["items"]
    assert len(saved) == 1
    assert saved[0]["page"] == "modules"
    assert saved[0]["section"] == "timeline"
    assert saved[0]["content_key"] == "items"
    assert saved[0]["content_type"] == "json"
    items = json.loads(saved[0]["content_value"])
    assert [item["title"] for item in items] == ["Kickoff", "Rollout"]
    assert [item["display_order"] for item in items] == [0, 1]
    assert backend.calls_to("POST", "/api/admin/content/bulk")[0]["authorization"] == "Bearer admin-token"


def test_content_editor_array_actions_rerender_without_saving(client, backend):
    token = vault_login(client, backend)
    form = {
        "_csrf_token": token,
        "item_count": "2",
        "items-0-title": "Kickoff",
        "items-1-title": "Rollout",
    }
    moved = client.post(f"{VAULT}/content/modules/timeline", data={**form, "action": "up:1"})
    assert moved.status_code == 200
    html = moved.get_data(as_text=True)
    assert html.index('value="Rollout"') < html.index('value="Kickoff"')
    assert "You have unsaved changes." in html

    added = client.post(f"{VAULT}/content/modules/timeline", data={**form, "action": "add"})
    assert 'name="item_count" value="3"' in added.get_data(as_text=True)

    removed = client.post(f"{VAULT}/content/modules/timeline", data={**form, "action": "remove:0"})
    removed_html = removed.get_data(as_text=True)
    assert 'name="item_count" value="1"' in removed_html
    assert 'value="Kickoff"' not in removed_html

    bad = client.post(f"{VAULT}/content/modules/timeline", data={**form, "action": "explode:1"})
    assert bad.status_code == 400
    assert backend.calls_to("POST", "/api/admin/content/bulk") == []


def test_content_editor_rejects_missing_required_field(client, backend):
    token = vault_login(client, backend)
    response = client.post(f"{VAULT}/content/modules/timeline", data={
        "_csrf_token": token,
        "action": "save",
        "item_count": "1",
        "items-0-title": "",
    })
    assert response.status_code == 400
    assert "Phase 1: Phase Title is required." in response.get_data(as_text=True)
    assert backend.calls_to("POST", "/api/admin/content/bulk") == []


def test_content_editor_saves_field_section_types(client, backend):
    token = vault_login(client, backend)
    backend.route("POST", "/api/admin/content/bulk", {"success": True})
    response = client.post(f"{VAULT}/content/modules/cta", data={
        "_csrf_token": token,
        "action": "save",
        "title": "Pick a bundle",
        "subtitle": "Grow module by module",
        "bundles": "Starter,  Growth , ,Enterprise",
    })
    assert response.status_code in (302, 303)
    saved = {item["content_key"]: item for item in backend.calls_to("POST", "/api/admin/content/bulk")[0]["body"]["items"]}
    assert json.loads(saved["bundles"]["content_value"]) == ["Starter", "Growth", "Enterprise"]
    assert saved["bundles"]["content_type"] == "json"
    assert saved["show_pricing_link"]["content_value"] == "false"
    assert saved["show_pricing_link"]["content_type"] == "boolean"


def test_rejected_vault_token_logs_out(client, backend):
    token = vault_login(client, backend)
    backend.route("POST", "/api/admin/content/bulk", {"error": "Session expired"}, status=401)
    response = client.post(f"{VAULT}/content/modules/hero", data={
        "_csrf_token": token,
        "action": "save",
        "title": "New title",
        "subtitle": "",
    }, follow_redirects=False)
    assert response.status_code in (302, 303)
    assert urlsplit(response.headers["Location"]).path == VAULT
    with client.session_transaction() as sess:
        assert "superadmin_token" not in sess


# Vault blog editor
def test_blog_editor_creates_sanitized_post(client, backend):
    token = vault_login(client, backend)
    backend.route("GET", "/api/admin/blog/posts", {"posts": []})
    backend.route("GET", "/api/admin/blog/categories", {"categories": [{"name": "Technology"}]})
    backend.route("POST", "/api/admin/blog/posts", {"post": {"id": 7}})

    editor = client.get(f"{VAULT}/blog")
    assert editor.status_code == 200
    assert 'data-command="bold"' in editor.get_data(as_text=True)

    response = client.post(f"{VAULT}/blog/new", data={
        "_csrf_token": token,
        "action": "save",
        "title": "Hello Cognitive World",
        "content": '<p>Hi <strong>there</strong></p><script>alert(1)</script>',
        "category": "Technology",
        "status": "draft",
        "author": "FinACEverse Team",
    })
    assert response.status_code in (302, 303)
    assert response.headers["Location"].endswith(f"{VAULT}/blog/7")
    body = backend.calls_to("POST", "/api/admin/blog/posts")[0]["body"]
    assert body["slug"] == "hello-cognitive-world"
    assert body["meta_title"] == "Hello Cognitive World"
    assert "<script>" not in body["content"]
    assert "<strong>there</strong>" in body["content"]


def test_blog_editor_requires_title(client, backend):
    token = vault_login(client, backend)
    response = client.post(f"{VAULT}/blog/new", data={
        "_csrf_token": token,
        "action": "save",
        "title": "",
        "status": "draft",
    })
    assert response.status_code == 400
    assert "Title is required" in response.get_data(as_text=True)
    assert backend.calls_to("POST", "/api/admin/blog/posts") == []


def test_blog_editor_applies_generated_title(client, backend):
    token = vault_login(client, backend)
    backend.route("POST", "/api/admin/blog/ai-generate", {"generated": "1. Close the Books in Three Days\n2. Another"})
    response = client.post(f"{VAULT}/blog/new", data={
        "_csrf_token": token,
        "action": "generate",
        "generation_type": "title",
        "prompt": "month-end close",
        "title": "",
        "status": "draft",
    })
    assert response.status_code == 200
    html = response.get_data(as_text=True)
    assert 'value="Close the Books in Three Days"' in html
    assert 'value="close-the-books-in-three-days"' in html
    assert backend.calls_to("POST", "/api/admin/blog/ai-generate")[0]["body"] == {
        "prompt": "month-end close",
        "type": "title",
    }


def test_blog_editor_publish_and_delete(client, backend):
    token = vault_login(client, backend)
    backend.route("PUT", "/api/admin/blog/posts/7", {"success": True})
    backend.route("DELETE", "/api/admin/blog/posts/7", {"success": True})
    assert client.post(f"{VAULT}/blog/7/publish", data={"_csrf_token": token}).status_code in (302, 303)
    assert backend.calls_to("PUT", "/api/admin/blog/posts/7")[0]["body"] == {"status": "published"}
    assert client.post(f"{VAULT}/blog/7/delete", data={"_csrf_token": token}).status_code in (302, 303)
    assert len(backend.calls_to("DELETE", "/api/admin/blog/posts/7")) == 1


# Vault products
def test_product_manager_creates_product(client, backend):
    token = vault_login(client, backend)
    backend.route("GET", "/api/admin/products", {"products": [{"id": 1, "name": "Accute", "display_order": 1}]})
    backend.route("POST", "/api/admin/products", {"success": True})

    listing = client.get(f"{VAULT}/products")
    assert "Accute" in listing.get_data(as_text=True)

    response = client.post(f"{VAULT}/products/new", data={
        "_csrf_token": token,
        "slug": "luca",
        "name": "Luca",
        "tagline": "Domain intelligence",
        "status": "launching",
        "display_order": "3",
        "cell_size": "medium",
        "features": "Tax research, Advisory drafts",
    })
    assert response.status_code in (302, 303)
    body = backend.calls_to("POST", "/api/admin/products")[0]["body"]
    assert body["slug"] == "luca"
    assert body["display_order"] == 3
    assert body["features"] == ["Tax research", "Advisory drafts"]
    assert body["is_hero"] is False


def test_product_manager_requires_slug_and_name(client, backend):
    token = vault_login(client, backend)
    response = client.post(f"{VAULT}/products/new", data={
        "_csrf_token": token,
        "slug": "",
        "name": "",
        "status": "planned",
        "cell_size": "small",
    })
    assert response.status_code == 400
    assert "Slug and Name are required" in response.get_data(as_text=True)


def test_image_upload_is_validated_and_served(client, backend):
    token = vault_login(client, backend)
    response = client.post(
        f"{VAULT}/uploads",
        data={"_csrf_token": token, "file": (tiny_png(), "hero.png", "image/png")},
        content_type="multipart/form-data",
    )
    assert response.status_code == 201
    url = response.get_json()["url"]
    assert url.startswith(f"{VAULT}/uploads/")
    served = client.get(url)
    assert served.status_code == 200
    assert served.headers.get("Cache-Control") == "public, max-age=604800"

    fake = client.post(
        f"{VAULT}/uploads",
        data={"_csrf_token": token, "file": (io.BytesIO(b"not an image"), "hero.png", "image/png")},
        content_type="multipart/form-data",
    )
    assert fake.status_code == 400


# SEO dashboard
def test_seo_dashboard_falls_back_to_default_suggestions(client, backend):
    vault_login(client, backend)
    response = client.get("/seo-dashboard")
    assert response.status_code == 200
    html = response.get_data(as_text=True)
    assert "cognitive operating system" in html
    assert "Add FAQ schema markup for featured snippets" in html
    assert "Some SEO panels could not be refreshed." in html
    assert response.headers.get("X-Robots-Tag") == "noindex, nofollow, noarchive"


def test_seo_dashboard_renders_backend_panels(client, backend):
    vault_login(client, backend)
    backend.route("GET", "/api/seo/issues", [
        {"issue_type": "meta", "severity": "critical", "page_url": "/", "description": "Missing description",
         "auto_fixable": True},
        {"issue_type": "alt", "severity": "warning", "page_url": "/blog", "description": "Image without alt"},
    ])
    backend.route("GET", "/api/seo/gsc/summary", {"tracked_keywords": 14, "total_clicks": 2048})
    issues = client.get("/seo-dashboard?tab=issues").get_data(as_text=True)
    assert "Missing description" in issues
    assert "severity-critical" in issues
    assert "Run auto-fix on 1 issue(s)?" in issues

    keywords = client.get("/seo-dashboard?tab=keywords").get_data(as_text=True)
    assert "2,048" in keywords


def test_seo_keyword_management(client, backend):
    token = vault_login(client, backend)
    backend.route("POST", "/api/seo/target-keywords", {"success": True})
    backend.route("DELETE", "/api/seo/target-keywords/cognitive%20finance", {"success": True})

    added = client.post("/seo-dashboard/keywords", data={"_csrf_token": token, "keyword": "cognitive finance"})
    assert added.status_code in (302, 303)
    assert backend.calls_to("POST", "/api/seo/target-keywords")[0]["body"] == {"keyword": "cognitive finance"}

    removed = client.post("/seo-dashboard/keywords/delete", data={"_csrf_token": token, "keyword": "cognitive finance"})
    assert removed.status_code in (302, 303)
    assert len(backend.calls_to("DELETE", "/api/seo/target-keywords/cognitive%20finance")) == 1


def test_seo_refresh_and_auto_fix(client, backend):
    token = vault_login(client, backend)
    backend.route("POST", "/api/seo/backlinks/crawl", {"success": True})
    backend.route("POST", "/api/seo/auto-fix", {"message": "3 fixes applied"})

    refreshed = client.post("/seo-dashboard/refresh", data={"_csrf_token": token, "tab": "backlinks"})
    assert refreshed.headers["Location"].endswith("/seo-dashboard?tab=backlinks")
    assert len(backend.calls_to("POST", "/api/seo/backlinks/crawl")) == 1

    fixed = client.post("/seo-dashboard/auto-fix", data={"_csrf_token": token}, follow_redirects=True)
    assert "3 fixes applied" in fixed.get_data(as_text=True)


def test_seo_data_endpoint_reports_expired_session(client, backend):
    vault_login(client, backend)
    backend.route("GET", "/api/seo/report", {"error": "expired"}, status=401)
    response = client.get("/seo-dashboard/data")
    assert response.status_code == 401
    assert urlsplit(response.get_json()["redirect"]).path == VAULT


def test_seo_data_endpoint_renders_active_tab_panel(client, backend):
    vault_login(client, backend)
    backend.route("GET", "/api/seo/backlinks/top", [
        {"source_url": "https://ref.example/post", "domain_authority": 72, "is_dofollow": True},
    ])
    backend.route("GET", "/api/seo/backlinks/stats", {"total": 1500, "unique_domains": 40})

    payload = client.get("/seo-dashboard/data?tab=backlinks").get_json()
    assert payload["tab"] == "backlinks"
    assert set(payload["slots"]) == {target.slot for target in SEO_TARGETS}
    assert "https://ref.example/post" in payload["html"]
    assert "1,500" in payload["html"]

    assert client.get("/seo-dashboard/data?tab=issues").get_json()["html"] is None
    assert client.get("/seo-dashboard/data?tab=optimize").get_json()["html"] is None

    page = client.get("/seo-dashboard?tab=backlinks").get_data(as_text=True)
    assert 'data-poll-url="/seo-dashboard/data?tab=backlinks"' in page
    assert "data-panel" in page


def test_seo_optimize_tab_tolerates_non_object_bodies(client, backend):
    token = vault_login(client, backend)
    backend.route("GET", "/api/seo/target-keywords", ["cognitive finance"])
    backend.route("GET", "/api/seo/ai-suggestions", [])
    response = client.get("/seo-dashboard?tab=optimize")
    assert response.status_code == 200
    html = response.get_data(as_text=True)
    assert "No target keywords yet." in html
    assert "No suggestions available." in html

    backend.route("POST", "/api/seo/auto-fix", [])
    fixed = client.post("/seo-dashboard/auto-fix", data={"_csrf_token": token}, follow_redirects=True)
    assert fixed.status_code == 200
    assert "Auto-fix run completed." in fixed.get_data(as_text=True)
