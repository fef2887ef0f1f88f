# apps/routers/whatsapp.py
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from adapters.whatsapp.pairing import render_png, to_data_url
from apps.container import Container
from apps.deps import ERROR_NOT_FOUND, _err, _ok, get_container, require_api_key

logger = logging.getLogger(__name__)

whatsapp_router = APIRouter(prefix="/api/whatsapp", tags=["whatsapp"])

QR_EXPIRES_IN_SECONDS = 60


@whatsapp_router.get("/status")
async def status(c: Container = Depends(get_container)):
    return _ok(c.session.get_status().model_dump(mode="json"))


@whatsapp_router.get("/qr", dependencies=[Depends(require_api_key)])
async def qr(c: Container = Depends(get_container)):
    code = c.session.get_pairing_code()
    if code is None:
        return _err(404, ERROR_NOT_FOUND, "No QR code available. WhatsApp may already be connected.")
    return _ok({
        "qrCode": to_data_url(code),
        "qrString": code.value,
        "format": code.format.value,
        "expiresIn": QR_EXPIRES_IN_SECONDS,
    })


@whatsapp_router.get("/qr/image", dependencies=[Depends(require_api_key)])
async def qr_image(c: Container = Depends(get_container)):
    code = c.session.get_pairing_code()
    if code is None:
        return _err(404, ERROR_NOT_FOUND, "No QR code available")
    return Response(content=render_png(code), media_type="image/png", headers={"Cache-Control": "no-store"})


@whatsapp_router.post("/reconnect", dependencies=[Depends(require_api_key)])
async def reconnect(c: Container = Depends(get_container)):
    await c.session.reconnect()
    return _ok(c.session.get_status().model_dump(mode="json"), message="Reconnection initiated")
