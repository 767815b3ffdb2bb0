import json
import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.security import APIKeyHeader

from seo_llm_core import GenerationClient, OrchestrationError
from seo_llm_core.errors import InvalidRequest, ProviderError
from seo_llm_core.failure_logger import setup_failure_logger

from .schemas import GenerateRequest, GenerateResponse, StreamRequest

# Configure logging
logging.basicConfig(level=logging.INFO)

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger("seo_llm_service")


# --- Lifespan Management ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the process-wide GenerationClient once for the app's lifetime."""
    failure_log_dir = os.getenv("FAILURE_LOG_DIR")
    if failure_log_dir:
        setup_failure_logger(failure_log_dir)
    app.state.generation_client = GenerationClient.from_env()
    logger.info(
        f"GenerationClient initialized with {app.state.generation_client.pool.size} key(s)."
    )
    yield
    logger.info("GenerationClient released.")


# --- FastAPI App Setup ---
app = FastAPI(title="SEO LLM Generation Service", lifespan=lifespan)
api_key_header = APIKeyHeader(name="Authorization", auto_error=False)


def get_generation_client(request: Request) -> GenerationClient:
    """Dependency to get the generation client from the app state."""
    return request.app.state.generation_client


async def verify_api_key(auth: Optional[str] = Depends(api_key_header)):
    """Checks the bearer token when SERVICE_API_KEY is configured."""
    service_api_key = os.getenv("SERVICE_API_KEY")
    if not service_api_key:
        return None
    if not auth or auth != f"Bearer {service_api_key}":
        raise HTTPException(status_code=401, detail="Invalid or missing API Key")
    return auth


def _condition_body(error: OrchestrationError) -> dict:
    return {
        "condition": error.condition,
        "message": str(error),
        "retryable": error.retryable,
    }


@app.exception_handler(OrchestrationError)
async def orchestration_error_handler(request: Request, exc: OrchestrationError):
    logger.error(f"Generation failed ({exc.condition}): {exc}")
    return JSONResponse(status_code=503, content=_condition_body(exc))


@app.exception_handler(ProviderError)
async def provider_error_handler(request: Request, exc: ProviderError):
    logger.error(f"Provider rejected request ({exc.error_type}): {exc}")
    status_code = 400 if isinstance(exc, InvalidRequest) else 502
    return JSONResponse(
        status_code=status_code,
        content={"condition": exc.error_type, "message": str(exc), "retryable": False},
    )


@app.get("/")
def read_root():
    return {"Status": "SEO LLM generation service is running"}


@app.post("/v1/generate", response_model=GenerateResponse)
async def generate(
    body: GenerateRequest,
    client: GenerationClient = Depends(get_generation_client),
    _=Depends(verify_api_key),
):
    """Generates the complete text, repaired into JSON when json_mode is set."""
    text = await client.generate(body.system_instruction, body.user_prompt, body.to_options())
    return GenerateResponse(text=text)


@app.post("/v1/generate/stream")
async def generate_stream(
    body: StreamRequest,
    client: GenerationClient = Depends(get_generation_client),
    _=Depends(verify_api_key),
):
    """
    Streams text chunks as server-sent events.

    Terminal conditions detected before the first chunk become a regular
    error response; later failures end the event stream with an error event.
    """
    stream = client.stream(body.system_instruction, body.user_prompt, body.to_options())
    try:
        first_chunk: Optional[str] = await stream.__anext__()
    except StopAsyncIteration:
        first_chunk = None

    async def event_stream() -> AsyncIterator[str]:
        try:
            if first_chunk is not None:
                yield f"data: {json.dumps({'text': first_chunk})}\n\n"
                async for chunk in stream:
                    yield f"data: {json.dumps({'text': chunk})}\n\n"
        except OrchestrationError as e:
            logger.error(f"Stream ended with {e.condition}: {e}")
            yield f"data: {json.dumps({'error': _condition_body(e)})}\n\n"
        finally:
            await stream.aclose()
        yield "data: [DONE]\n\n"

    return StreamingResponse(event_stream(), media_type="text/event-stream")


@app.get("/v1/key-pool-stats")
async def key_pool_stats(
    client: GenerationClient = Depends(get_generation_client),
    _=Depends(verify_api_key),
):
    """Returns pool health and per-key usage statistics."""
    return client.pool_stats()


@app.post("/v1/key-pool/reset-daily")
async def reset_daily(
    client: GenerationClient = Depends(get_generation_client),
    _=Depends(verify_api_key),
):
    """Clears daily quota flags, e.g. after the provider's quota reset."""
    await client.reset_daily_exhaustion()
    return client.pool_stats()

