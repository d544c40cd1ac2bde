# main.py
import logging
import secrets
from typing import List, Optional

from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

from . import ai_helpers, models
from .attachments import AttachmentRelocator, S3ObjectStorage
from .config import Settings, configure_logging
from .correlator import MailCorrelator, ensure_system_user
from .exceptions import (
    ConfigurationError,
    ConflictError,
    InboundPayloadError,
    InvalidRequestError,
    LLMGenerationError,
    LLMResponseDecodeError,
    NotFoundError,
)
from .inbound import InboundPipeline, normalize_payload
from .mailer import RfpDispatcher, build_mailer
from .proposal_parser import ProposalEnricher
from .ranking import compare_proposals
from .storage import JsonStore

logger = logging.getLogger(__name__)

MIN_RFP_TEXT_LENGTH = 10


def create_app(settings: Optional[Settings] = None, store: Optional[JsonStore] = None,
               llm=None, object_storage=None, mailer=None) -> FastAPI:
    """Build the API. Collaborators default to the real ones built from ``settings``."""
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    store = store or JsonStore(settings.data_dir)
    llm = llm or ai_helpers.OpenAIChatClient(
        settings.openai_api_key, settings.openai_model, timeout=settings.llm_timeout_seconds)
    object_storage = object_storage or S3ObjectStorage(settings)
    mailer = mailer or build_mailer(settings)

    pipeline = InboundPipeline(
        store,
        MailCorrelator(store),
        AttachmentRelocator(object_storage, settings),
        ProposalEnricher(store, llm),
    )
    dispatcher = RfpDispatcher(store, mailer, settings)

    app = FastAPI(title="RFP Cloud API")
    app.state.settings = settings
    app.state.store = store
    app.state.llm = llm
    app.state.pipeline = pipeline
    app.state.dispatcher = dispatcher

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(NotFoundError)
    async def not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": exc.message})

    @app.exception_handler(InvalidRequestError)
    async def invalid_request(request: Request, exc: InvalidRequestError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(ConflictError)
    async def conflict(request: Request, exc: ConflictError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(ConfigurationError)
    async def not_configured(request: Request, exc: ConfigurationError):
        logger.error("Configuration error: %s", exc)
        return JSONResponse(status_code=503, content={"detail": "Service is not configured"})

    @app.exception_handler(LLMResponseDecodeError)
    async def bad_llm_output(request: Request, exc: LLMResponseDecodeError):
        return JSONResponse(status_code=502, content={"detail": "LLM returned invalid JSON"})

    @app.exception_handler(LLMGenerationError)
    async def llm_failed(request: Request, exc: LLMGenerationError):
        return JSONResponse(status_code=502, content={"detail": "Failed to generate response from LLM"})

    # --- RFP endpoints ---
    @app.post("/api/v1/rfps", response_model=models.RFP)
    def create_rfp(body: models.RFPCreateRequest):
        text = body.text.strip()
        if len(text) < MIN_RFP_TEXT_LENGTH:
            raise InvalidRequestError("RFP text must be at least 10 characters long")
        if body.user_id:
            owner = store.require("users", body.user_id)
        else:
            owner = ensure_system_user(store)

        parsed = ai_helpers.structure_rfp(text, llm)
        if not parsed.items:
            raise InvalidRequestError("Invalid RFP structure: at least one item is required")

        rfp = models.RFP(
            title=parsed.title or "Untitled RFP",
            description_raw=text,
            requirements=models.Requirements(
                items=parsed.items,
                metadata=models.RequirementsMetadata(parsed_at=models.utcnow(), item_count=len(parsed.items)),
            ),
            budget_usd=parsed.total_budget_usd,
            delivery_days=parsed.delivery_days,
            payment_terms=parsed.payment_terms,
            warranty_months=parsed.warranty_months,
            reference_token=secrets.token_hex(16),
            created_by_id=owner.id,
        )
        return store.insert("rfps", rfp)

    @app.get("/api/v1/rfps", response_model=List[models.RFP])
    def list_rfps():
        return store.find_all("rfps")

    @app.get("/api/v1/rfps/{rfp_id}", response_model=models.RFP)
    def get_rfp(rfp_id: str):
        return store.require("rfps", rfp_id)

    # --- Vendor endpoints ---
    @app.post("/api/v1/vendors", response_model=models.VendorOut)
    def create_vendor(vendor: models.VendorCreate):
        def make():
            return models.Vendor(name=vendor.name, contact_email=vendor.email, phone=vendor.phone,
                                 notes=vendor.notes, meta=vendor.meta)
        created_vendor, created = store.get_or_create("vendors", {"contact_email": vendor.email}, make)
        if not created:
            raise ConflictError(f"Vendor with email {vendor.email} already exists")
        return created_vendor

    @app.get("/api/v1/vendors", response_model=List[models.VendorOut])
    def list_vendors():
        return store.find_all("vendors")

    # --- Send RFP ---
    @app.post("/api/v1/rfps/{rfp_id}/send", response_model=models.DispatchSummary)
    def send_rfp(rfp_id: str, body: models.SendRFPRequest):
        rfp = store.require("rfps", rfp_id)
        if not body.vendor_ids:
            raise InvalidRequestError("vendor_ids is required and must be a non-empty array")
        vendors = [v for v in (store.get("vendors", vid) for vid in body.vendor_ids) if v]
        if not vendors:
            raise NotFoundError("No vendors found with the provided IDs", resource="vendors")
        return dispatcher.dispatch_many(
            rfp, vendors,
            subject=body.subject, text=body.text, html=body.html,
            sender_name=body.sender_name, sender_email=body.sender_email,
        )

    # --- Inbound webhook ---
    @app.api_route("/api/v1/email/inbound", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
    async def inbound_email(request: Request, background_tasks: BackgroundTasks):
        token = request.query_params.get("token") or ""
        expected = settings.inbound_token or ""
        if not token or not expected or not secrets.compare_digest(token, expected):
            return JSONResponse(status_code=401, content={"ok": False, "error": "invalid token"})
        if request.method != "POST":
            return JSONResponse(status_code=405, content={"ok": False, "error": "method not allowed"})

        try:
            fields, files = await _read_form(request)
            email = normalize_payload(fields, files)
            proposal = await run_in_threadpool(pipeline.receive, email)
        except InboundPayloadError as e:
            logger.error("Inbound handler error: %s", e)
            return JSONResponse(status_code=500, content={"ok": False, "error": "could not parse inbound email"})
        except Exception:
            logger.exception("Inbound handler error")
            return JSONResponse(status_code=500, content={"ok": False, "error": "internal"})

        background_tasks.add_task(pipeline.enrich, proposal.id, email.body)
        return {"ok": True, "createdProposalId": proposal.id}

    # --- Proposals listing / compare ---
    @app.get("/api/v1/rfps/{rfp_id}/proposals", response_model=List[models.Proposal])
    def list_proposals_for_rfp(rfp_id: str):
        store.require("rfps", rfp_id)
        return store.find_all("proposals", rfp_id=rfp_id)

    @app.get("/api/v1/proposals/{proposal_id}", response_model=models.Proposal)
    def get_proposal(proposal_id: str):
        return store.require("proposals", proposal_id)

    @app.get("/api/v1/rfps/{rfp_id}/compare", response_model=models.ComparisonResult)
    def compare(rfp_id: str):
        return compare_proposals(store, rfp_id)

    return app


async def _read_form(request: Request):
    """Split a multipart/urlencoded body into text fields and uploaded files."""
    try:
        form = await request.form()
    except Exception as e:
        raise InboundPayloadError(f"Unparsable inbound form: {e}") from e

    fields = {}
    files = []
    for key, value in form.multi_items():
        if isinstance(value, UploadFile):
            content = await value.read()
            files.append(models.InboundAttachment(
                filename=value.filename or f"attachment-{key}",
                content=content,
                content_type=value.content_type,
            ))
        else:
            fields.setdefault(key, []).append(value)
    return fields, files


def __getattr__(name):
    # ``uvicorn rfp_cloud.main:app`` resolves this; plain imports stay side-effect free.
    if name == "app":
        app = create_app()
        globals()["app"] = app
        return app
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def run():
    import uvicorn
    uvicorn.run("rfp_cloud.main:app", host="0.0.0.0", port=5000)


if __name__ == "__main__":
    run()
