"""
HTML pages for the public and protected areas. All dynamic values are escaped.
"""
import html

from social_login.middleware import AuthContext
from social_login.providers import ProviderRegistry

NOTICES = {
    "denied": "Login was cancelled at the provider. Please try again.",
    "login_failed": "Login failed. Please try again.",
}

_STYLE = """
    body { font-family: system-ui, sans-serif; margin: 2rem; }
    .card { max-width: 640px; padding: 1.5rem 2rem; border: 1px solid #ddd; border-radius: 8px; }
    .notice { color: #a00; }
    .button { display: inline-block; margin: 0.3rem 0.5rem 0.3rem 0; padding: 0.5rem 1rem;
              background: #4285f4; color: white; text-decoration: none; border-radius: 4px; }
    .button.logout { background: #dc3545; }
"""


def _page(title: str, body: str) -> str:
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{html.escape(title)}</title><style>{_STYLE}</style></head>
<body>
  <div class="card">
{body}
  </div>
</body>
</html>"""


def _provider_links(registry: ProviderRegistry) -> str:
    links = []
    for pid in registry.provider_ids():
        name = registry.config_for(pid).display_name
        links.append(f'<a class="button" href="/login/{html.escape(pid)}">Log in with {html.escape(name)}</a>')
    return "\n    ".join(links)


def home_page(registry: ProviderRegistry) -> str:
    return _page(
        "Social login",
        f"""    <h1>Social login</h1>
    <p>Sign in with one of the configured providers.</p>
    {_provider_links(registry)}
    <p><a href="/protected">Protected area</a></p>""",
    )


def login_page(registry: ProviderRegistry, notice: str | None = None) -> str:
    notice_html = ""
    if notice:
        notice_html = f'<p class="notice">{html.escape(NOTICES.get(notice, NOTICES["login_failed"]))}</p>'
    return _page(
        "Log in",
        f"""    <h1>Log in</h1>
    {notice_html}
    {_provider_links(registry)}
    <p><a href="/">Home</a></p>""",
    )


def protected_page(ctx: AuthContext, registry: ProviderRegistry) -> str:
    provider = registry.config_for(ctx.provider_id).display_name if ctx.provider_id in registry else ctx.provider_id
    return _page(
        "Protected area",
        f"""    <h1>Protected area</h1>
    <p>You are signed in as <strong>{html.escape(ctx.display_name)}</strong></p>
    <p>Provider: <strong>{html.escape(provider)}</strong></p>
    <a class="button" href="/protected/profile">View profile</a>
    <a class="button logout" href="/api/auth/logout">Log out</a>""",
    )


def profile_page(ctx: AuthContext) -> str:
    return _page(
        "Profile",
        f"""    <h1>Profile</h1>
    <p><strong>Provider:</strong> {html.escape(ctx.provider_id)}</p>
    <p><strong>Display name:</strong> {html.escape(ctx.display_name)}</p>
    <p><strong>Provider user id:</strong> {html.escape(ctx.provider_user_id)}</p>
    <p><strong>Email:</strong> {html.escape(ctx.email or "(not shared)")}</p>
    <p><strong>Session expires:</strong> {html.escape(ctx.expires_at.isoformat())}</p>
    <a class="button" href="/protected">Back</a>""",
    )


def error_page(title: str, message: str) -> str:
    return _page(title, f"""    <h1>{html.escape(title)}</h1>
    <p>{html.escape(message)}</p>
    <p><a href="/">Home</a></p>""")
