# rp_sso/main.py
#
# -----------------------------------------------------------------------------
# Architectural notes (high level)
# -----------------------------------------------------------------------------
# This file is intentionally "thin" orchestration glue:
#   - It wires HTTP endpoints to the handshake implemented in handshake.py.
#   - It MUST NOT implement crypto or payload parsing itself.
#   - It keeps no state: there is no session after authentication, the
#     verified identity claim is simply returned to the caller.
#
# Key modules / responsibilities:
#   - config.py       : environment-driven settings (provider URLs, secret, timeout)
#   - handshake.py    : signed redirects + inbound payload verification
#   - sso_payload.py  : nonce / base64 / HMAC / key=value parsing
#   - audit.py        : append-only audit log (security telemetry, forensics)
#
# Flow:
#   browser -> GET /sso/login?return_url=...   -> 302 to provider (signed)
#   provider -> browser -> GET /sso/callback?sso=...&sig=...  -> identity claim
#
# Failed callbacks all answer the same 403; the specific reason only goes to
# the audit log.
# -----------------------------------------------------------------------------

from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import RedirectResponse

from .audit import append_event, build_common
from .config import settings
from .handshake import SsoFlow, SsoHandshake, SsoMisuseError
from .models import IdentityClaim, SsoStatus


# -----------------------------------------------------------------------------
# Lifecycle
# -----------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Fail fast: no secret, no server.
    config = settings.handshake_config()
    client = httpx.Client(timeout=config.timeout, follow_redirects=False)
    app.state.handshake = SsoHandshake(config, client)
    try:
        yield
    finally:
        app.state.handshake.close()
        client.close()


app = FastAPI(
    title="RP SSO Server",
    version="0.1.0",
    lifespan=lifespan,
)


def get_handshake(request: Request) -> SsoHandshake:
    return request.app.state.handshake


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def _request_meta(request: Request) -> dict:
    return {
        "request_ip": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


def _start_flow(
    flow: SsoFlow,
    request: Request,
    return_url: Optional[str],
    handshake: SsoHandshake,
) -> RedirectResponse:
    if return_url is None:
        return_url = settings.default_return_url
    if not return_url.strip():
        raise HTTPException(400, "return_url must not be empty")

    if not handshake.is_available():
        append_event(
            {
                **build_common(flow=flow.value, return_url=return_url, **_request_meta(request)),
                "result": "unavailable",
                "reason": "provider_unreachable",
            }
        )
        raise HTTPException(
            status_code=503,
            detail={
                "error": "sso_unavailable",
                "message": "The sign-on service is currently unavailable.",
            },
        )

    try:
        redirect = handshake.build_redirect(return_url, flow)
    except SsoMisuseError as e:
        raise HTTPException(400, str(e))

    append_event(
        {
            **build_common(
                flow=flow.value,
                nonce=redirect.nonce,
                return_url=return_url,
                payload=redirect.payload,
                signature=redirect.signature,
                **_request_meta(request),
            ),
            "result": "issued",
            "reason": "redirect_signed",
        }
    )
    return RedirectResponse(redirect.url, status_code=302)


# -----------------------------------------------------------------------------
# Provider status
# -----------------------------------------------------------------------------
@app.get("/api/sso/status", response_model=SsoStatus)
def sso_status(handshake: SsoHandshake = Depends(get_handshake)):
    return SsoStatus(available=handshake.is_available())


# -----------------------------------------------------------------------------
# Outbound flows
# -----------------------------------------------------------------------------
@app.get("/sso/login")
def sso_login(
    request: Request,
    return_url: Optional[str] = None,
    handshake: SsoHandshake = Depends(get_handshake),
):
    return _start_flow(SsoFlow.LOGIN, request, return_url, handshake)


@app.get("/sso/signup")
def sso_signup(
    request: Request,
    return_url: Optional[str] = None,
    handshake: SsoHandshake = Depends(get_handshake),
):
    return _start_flow(SsoFlow.SIGNUP, request, return_url, handshake)


@app.get("/sso/verify")
def sso_verify(
    request: Request,
    return_url: Optional[str] = None,
    handshake: SsoHandshake = Depends(get_handshake),
):
    return _start_flow(SsoFlow.VERIFY, request, return_url, handshake)


# -----------------------------------------------------------------------------
# Inbound callback
# -----------------------------------------------------------------------------
@app.get("/sso/callback", response_model=IdentityClaim)
def sso_callback(
    request: Request,
    sso: str,
    sig: str,
    handshake: SsoHandshake = Depends(get_handshake),
):
    # `sso` arrives already URL-decoded by the framework, as the handshake expects.
    outcome = handshake.inspect(sso, sig)
    common = build_common(payload=sso, signature=sig, **_request_meta(request))

    if not outcome.ok:
        append_event(
            {
                **common,
                "result": "denied",
                "reason": outcome.reason.value,
            }
        )
        raise HTTPException(
            status_code=403,
            detail={
                "error": "not_authorized",
                "message": "SSO authentication failed.",
            },
        )

    claim = outcome.claim
    append_event(
        {
            **common,
            "result": "approved",
            "reason": outcome.reason.value,
            "external_id": claim.id,
            "username": claim.username,
        }
    )
    return claim
