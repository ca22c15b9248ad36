"""
Auth router: password login, OAuth login and callback, current user, logout.

- /login checks username/password and returns the user plus a Bearer token.
- /{provider} redirects to Google or GitHub with a CSRF state stored in a
  short-lived cookie.
- /{provider}/callback validates state, exchanges the code, finds or creates
  the account, sets the token in an HttpOnly cookie and redirects to the
  frontend (no token in URL). New OAuth accounts land on /pending until an
  admin approves them.
- /me returns the current user; /logout clears the session cookie.
- get_current_user / require_approved / require_admin are the dependencies
  other routers use to gate access.
"""
import logging
import secrets
from dataclasses import dataclass
from urllib.parse import urlencode

import requests
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from calibre_shelf.config import TOKEN_TTL, Settings
from calibre_shelf.schemas import LoginBody, LoginResponse, MessageResponse, UserOut
from calibre_shelf.services.auth_service import AuthService
from calibre_shelf.services.user_service import UserService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth")

bearer = HTTPBearer(auto_error=False)

# Request timeouts (connect, read) in seconds for provider calls
OAUTH_REQUEST_TIMEOUT = (5, 30)


@dataclass(frozen=True)
class OAuthProvider:
    name: str
    client_id: str
    client_secret: str
    authorize_url: str
    token_url: str
    userinfo_url: str
    scope: str


def configured_providers(settings: Settings) -> dict[str, OAuthProvider]:
    """OAuth providers whose client id and secret are both set."""
    providers = {}
    if settings.google_client_id and settings.google_client_secret:
        providers["google"] = OAuthProvider(
            name="google",
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
            token_url="https://oauth2.googleapis.com/token",
            userinfo_url="https://openidconnect.googleapis.com/v1/userinfo",
            scope="openid email profile",
        )
    if settings.github_client_id and settings.github_client_secret:
        providers["github"] = OAuthProvider(
            name="github",
            client_id=settings.github_client_id,
            client_secret=settings.github_client_secret,
            authorize_url="https://github.com/login/oauth/authorize",
            token_url="https://github.com/login/oauth/access_token",
            userinfo_url="https://api.github.com/user",
            scope="read:user user:email",
        )
    return providers


# --- Dependencies ---


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_user_service(request: Request) -> UserService:
    return request.app.state.user_service


def _cookie_kwargs(secure: bool = False) -> dict:
    return {
        "httponly": True,
        "samesite": "lax",
        "secure": secure,
        "path": "/",
    }


def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
    auth_service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
) -> UserOut:
    """
    Read the token from the Authorization header, falling back to the OAuth
    session cookie, and load the user it names.
    Raises 401 if no token or the token is invalid/expired, 404 if the user
    no longer exists.
    """
    token = credentials.credentials if credentials else None
    if not token:
        token = request.cookies.get(settings.session_cookie_name)
    if not token:
        raise HTTPException(status_code=401, detail="No token provided")
    claims = auth_service.verify_token(token)
    if claims is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    user = auth_service.get_user_by_id(str(claims["id"]))
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def require_approved(user: UserOut = Depends(get_current_user)) -> UserOut:
    if not user.is_approved and not user.is_admin:
        raise HTTPException(status_code=403, detail="Account pending approval")
    return user


def require_admin(user: UserOut = Depends(get_current_user)) -> UserOut:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Forbidden")
    return user


# --- Password login ---


@router.post("/login", response_model=LoginResponse)
def login(
    body: LoginBody,
    auth_service: AuthService = Depends(get_auth_service),
):
    """Exchange username/password for the user profile and a 24h Bearer token."""
    if not body.username or not body.password:
        raise HTTPException(status_code=400, detail="Username and password are required")
    user = auth_service.validate_user(body.username, body.password)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid username or password")
    return LoginResponse(user=user, token=auth_service.generate_token(user))


@router.post("/logout", response_model=MessageResponse)
def logout(response: Response, settings: Settings = Depends(get_settings)):
    """
    Tokens are stateless, so logging out is up to the client discarding its
    token. The OAuth session cookie, if any, is cleared here.
    """
    response.delete_cookie(settings.session_cookie_name, path="/")
    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=UserOut)
def me(user: UserOut = Depends(get_current_user)):
    """Return the current user's profile."""
    return user


# --- OAuth ---


def _get_provider(name: str, settings: Settings) -> OAuthProvider:
    provider = configured_providers(settings).get(name)
    if provider is None:
        raise HTTPException(status_code=404, detail="Unknown OAuth provider")
    return provider


def _callback_url(provider: OAuthProvider, settings: Settings) -> str:
    return f"{settings.public_url}/api/auth/{provider.name}/callback"


@router.get("/{provider_name}")
def oauth_login(provider_name: str, settings: Settings = Depends(get_settings)):
    """
    Redirect to the provider's consent page. A random state value goes both
    into a short-lived cookie and the redirect URL so the callback can verify
    the request was not forged (CSRF protection).
    """
    provider = _get_provider(provider_name, settings)
    state = secrets.token_urlsafe(32)
    query = urlencode({
        "client_id": provider.client_id,
        "redirect_uri": _callback_url(provider, settings),
        "response_type": "code",
        "scope": provider.scope,
        "state": state,
    })
    redirect = RedirectResponse(url=f"{provider.authorize_url}?{query}")
    redirect.set_cookie(
        settings.oauth_state_cookie_name,
        state,
        max_age=settings.oauth_state_max_age,
        **_cookie_kwargs(secure=settings.secure_cookies),
    )
    return redirect


def _exchange_code(provider: OAuthProvider, code: str, redirect_uri: str) -> str:
    token_res = requests.post(
        provider.token_url,
        data={
            "client_id": provider.client_id,
            "client_secret": provider.client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": redirect_uri,
        },
        headers={"Accept": "application/json"},
        timeout=OAUTH_REQUEST_TIMEOUT,
    )
    token_data = token_res.json()
    if "error" in token_data:
        raise HTTPException(
            status_code=400,
            detail=f"Token exchange failed: {token_data.get('error_description', token_data['error'])}",
        )
    access_token = token_data.get("access_token")
    if not access_token:
        raise HTTPException(
            status_code=400,
            detail="Token exchange did not return access_token",
        )
    return access_token


def _fetch_profile(provider: OAuthProvider, access_token: str) -> tuple[str, str | None, str | None]:
    """Return (subject, email, display name) from the provider's userinfo endpoint."""
    headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
    res = requests.get(provider.userinfo_url, headers=headers, timeout=OAUTH_REQUEST_TIMEOUT)
    res.raise_for_status()
    info = res.json()

    if provider.name == "github":
        subject = str(info.get("id") or "")
        name = info.get("name") or info.get("login")
        email = info.get("email")
        if not email:
            # Private GitHub emails are only listed on /user/emails
            emails_res = requests.get(
                "https://api.github.com/user/emails",
                headers=headers,
                timeout=OAUTH_REQUEST_TIMEOUT,
            )
            emails_res.raise_for_status()
            for entry in emails_res.json():
                if entry.get("primary") and entry.get("verified"):
                    email = entry.get("email")
                    break
        return subject, email, name

    if info.get("email_verified") is not True:
        # Accounts are matched by email; only verified addresses may match
        raise HTTPException(status_code=400, detail=f"{provider.name} email is not verified")
    return str(info.get("sub") or ""), info.get("email"), info.get("name")


@router.get("/{provider_name}/callback")
def oauth_callback(
    provider_name: str,
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    settings: Settings = Depends(get_settings),
    auth_service: AuthService = Depends(get_auth_service),
    user_service: UserService = Depends(get_user_service),
):
    """
    Handle the redirect back from the provider. Validates the state cookie
    (CSRF), exchanges the code, finds or creates the account, sets the session
    cookie and redirects to the frontend.
    """
    provider = _get_provider(provider_name, settings)
    if error:
        raise HTTPException(status_code=400, detail=f"OAuth error: {error}")
    if not code or not state:
        raise HTTPException(status_code=400, detail="Missing code or state")

    state_cookie = request.cookies.get(settings.oauth_state_cookie_name)
    if not state_cookie or not secrets.compare_digest(state, state_cookie):
        raise HTTPException(status_code=400, detail="Invalid or expired state; please try logging in again")

    access_token = _exchange_code(provider, code, _callback_url(provider, settings))
    subject, email, name = _fetch_profile(provider, access_token)
    if not subject or not email:
        raise HTTPException(
            status_code=400,
            detail=f"{provider.name} profile missing id or email",
        )

    user = user_service.find_or_create_oauth_user(provider.name, subject, email, name)
    target = "/" if user.is_approved else "/pending"
    redirect = RedirectResponse(url=f"{settings.frontend_url}{target}")
    redirect.set_cookie(
        settings.session_cookie_name,
        auth_service.generate_token(user),
        max_age=int(TOKEN_TTL.total_seconds()),
        **_cookie_kwargs(secure=settings.secure_cookies),
    )
    # Clear state cookie
    redirect.delete_cookie(settings.oauth_state_cookie_name, path="/")
    return redirect
