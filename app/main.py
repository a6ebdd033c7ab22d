from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from app.api.field_lookup import router as field_lookup_router, test_ghl_field
from app.config import settings
from app.models.schemas import FieldLookupResponse
import logging

# Logging configuration: print to console, and to a file when LOG_FILE is set
handlers = [logging.StreamHandler()]
if settings.log_file:
    handlers.append(logging.FileHandler(settings.log_file, mode='a', encoding='utf-8'))
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s [%(levelname)s] %(message)s',
    handlers=handlers
)

logger = logging.getLogger(__name__)

app = FastAPI(title="GHL Field Resolver")

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(
    field_lookup_router,
    prefix="/api/ghl",
    tags=["ghl-field-lookup"]
)

# Path used by the dashboard before the /api/ghl routes existed
app.add_api_route("/test-ghl-field", test_ghl_field, methods=["POST"],
                  response_model=FieldLookupResponse, tags=["ghl-field-lookup"])


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # Malformed bodies still answer 200 with an error field
    logger.warning(f"Invalid request body on {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=200,
        content={"found": False, "error": "Invalid request body", "details": str(exc.errors())}
    )


@app.get("/health")
async def health_check():
    return {"status": "ok"}
