from fastapi import APIRouter, FastAPI, HTTPException, Security
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse, Response
from fastapi.security import APIKeyHeader
from pydantic import BaseModel
from typing import Any, Dict, List, Optional
import json
import logging
import os
import time

from app.services.amounts import compute_totals, map_client, to_invoice_record
from app.services.delivery_address import resolve_delivery_address
from app.services.html_preview import render_invoice_html
from app.services.invoice_number import generate_number, is_valid_number, next_sequence_number
from app.services.pdf_generator import render_invoice_pdf


class JSONFormatter(logging.Formatter):
    def format(self, record):
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if hasattr(record, "extra") and isinstance(record.extra, dict):
            log_data.update(record.extra)
        return json.dumps(log_data, ensure_ascii=False, default=str)


# Supprime les handlers existants et applique le notre
root_logger = logging.getLogger()
root_logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
for h in root_logger.handlers[:]:
    root_logger.removeHandler(h)
handler = logging.StreamHandler()
handler.setFormatter(JSONFormatter())
root_logger.addHandler(handler)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Facture PDF Engine",
    description="Mise en page des factures PDF conformes aux mentions légales françaises",
    version="1.0.0"
)

# Mode de facture par défaut : "fr" ou standard
INVOICE_MODE = os.getenv("INVOICE_MODE", "fr")

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


class InvoiceRequest(BaseModel):
    invoice: Dict[str, Any]
    seller: Dict[str, Any] = {}
    client: Optional[Dict[str, Any]] = None
    mode: Optional[str] = None


class NumberRequest(BaseModel):
    invoice_number: Optional[str] = None
    existing_numbers: List[str] = []
    mode: Optional[str] = None


# Gestionnaire erreurs de validation JSON (422)
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc):
    return JSONResponse(
        status_code=422,
        content={
            "error": "Données invalides",
            "detail": str(exc.errors())
        }
    )


def _load_api_keys() -> dict:
    clients_json = os.getenv("CLIENTS", "{}")
    try:
        clients = json.loads(clients_json)
    except json.JSONDecodeError:
        logger.warning("Variable CLIENTS illisible, clé API par défaut utilisée")
        clients = {}
    return clients or {"default": os.getenv("API_KEY", "dev-secret-key")}


def verify_api_key(api_key: str = Security(api_key_header)) -> str:
    clients = _load_api_keys()
    for client_name, client_key in clients.items():
        if api_key == client_key:
            return client_name
    raise HTTPException(
        status_code=403,
        detail={"error": "Clé API invalide ou manquante"}
    )


def _mode(requested: Optional[str]) -> str:
    return requested or INVOICE_MODE


# Préfixe v1 pour tous les endpoints
v1 = APIRouter(prefix="/v1")


@app.get("/health")
def health_check():
    return {"status": "ok", "version": "1.0.0"}


@v1.post("/invoice/pdf")
async def generate_invoice_pdf(body: InvoiceRequest, api_key: str = Security(verify_api_key)):
    start = time.time()
    mode = _mode(body.mode)
    logger.info("Génération facture", extra={"extra": {"client": api_key, "invoice_number": body.invoice.get("invoiceNumber"), "mode": mode}})
    try:
        result = render_invoice_pdf(body.invoice, body.seller, body.client, mode=mode)
    except Exception as e:
        logger.error(f"Erreur interne : {e}")
        raise HTTPException(status_code=500, detail={"error": "Erreur interne", "message": str(e)})

    if not result.success:
        raise HTTPException(status_code=500, detail={"error": "Erreur génération PDF", "message": result.error})

    duration = round((time.time() - start) * 1000)
    logger.info("Facture servie", extra={"extra": {"filename": result.filename, "pages": result.page_count, "duration_ms": duration}})
    return Response(
        content=result.buffer,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{result.filename}"'}
    )


@v1.post("/invoice/preview", response_class=HTMLResponse)
async def preview_invoice(body: InvoiceRequest, api_key: str = Security(verify_api_key)):
    try:
        return HTMLResponse(render_invoice_html(body.invoice, body.seller, body.client, mode=_mode(body.mode)))
    except Exception as e:
        logger.error(f"Erreur aperçu HTML : {e}")
        raise HTTPException(status_code=500, detail={"error": "Erreur aperçu", "message": str(e)})


@v1.post("/invoice/totals")
async def invoice_totals(body: InvoiceRequest, api_key: str = Security(verify_api_key)):
    try:
        record = to_invoice_record(body.invoice)
        totals = compute_totals(record)
        return {
            "total": str(record.total),
            "totalAmount": str(record.total_amount),
            "subtotal": str(totals.subtotal),
            "totalTax": str(totals.total_tax),
            "grandTotal": str(totals.grand_total),
            "groups": [
                {"rate": str(g.rate), "base": str(g.base), "amount": str(g.amount)}
                for g in totals.groups
            ],
        }
    except Exception as e:
        logger.error(f"Erreur calcul des totaux : {e}")
        raise HTTPException(status_code=500, detail={"error": "Erreur calcul des totaux", "message": str(e)})


@v1.post("/invoice/delivery-address")
async def invoice_delivery_address(body: InvoiceRequest, api_key: str = Security(verify_api_key)):
    try:
        record = to_invoice_record(body.invoice)
        resolution = resolve_delivery_address(record, map_client(body.client))
        return resolution.model_dump(by_alias=True, mode="json")
    except Exception as e:
        logger.error(f"Erreur adresse de livraison : {e}")
        raise HTTPException(status_code=500, detail={"error": "Erreur adresse de livraison", "message": str(e)})


@v1.post("/invoice/number")
async def invoice_number(body: NumberRequest, api_key: str = Security(verify_api_key)):
    mode = _mode(body.mode)
    if body.invoice_number:
        number = generate_number(body.invoice_number, mode)
    else:
        number = next_sequence_number(body.existing_numbers, mode)
    return {"invoiceNumber": number, "valid": is_valid_number(number, mode)}


# Enregistrement du router v1
app.include_router(v1)
