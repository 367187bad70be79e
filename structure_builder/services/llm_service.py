"""LLM Service - Gemini/Claude text generation with timeout, cache and retry helpers."""

import asyncio
import hashlib
import logging
import time
from collections import OrderedDict
from typing import Awaitable, Callable, Optional, TypeVar

from structure_builder.prompts.structure_prompt import SYSTEM_PROMPT
from structure_builder.prompts.examples import format_few_shot
from structure_builder import config

logger = logging.getLogger(__name__)

T = TypeVar("T")
TextGenerator = Callable[[str], Awaitable[str]]

PROVIDERS = ("gemini", "claude")


class GenerationError(Exception):
    """Transport failure: timeout, connection error or non-success response."""


# ── Lazy Singleton Clients (connection reuse) ─────────────────
_gemini_client = None
_claude_client = None


def _get_gemini_client():
    """Get or create singleton genai.Client."""
    global _gemini_client
    if _gemini_client is None:
        from google import genai
        _gemini_client = genai.Client(api_key=config.GOOGLE_API_KEY)
        logger.info("Gemini client initialized (singleton)")
    return _gemini_client


def _get_claude_client():
    """Get or create singleton AsyncAnthropic client."""
    global _claude_client
    if _claude_client is None:
        import anthropic
        _claude_client = anthropic.AsyncAnthropic(api_key=config.ANTHROPIC_API_KEY)
        logger.info("Claude client initialized (singleton)")
    return _claude_client


def is_configured(provider: str) -> bool:
    if provider == "gemini":
        return bool(config.GOOGLE_API_KEY)
    if provider == "claude":
        return bool(config.ANTHROPIC_API_KEY)
    return False


def resolve_model(provider: Optional[str], model: Optional[str]) -> tuple[str, str, str]:
    """Return (provider, model alias, provider model id)."""
    provider = provider or config.DEFAULT_PROVIDER
    if provider not in PROVIDERS:
        raise ValueError(f"Unknown provider: {provider}")
    alias = model or config.DEFAULT_MODELS[provider]
    models = config.GEMINI_MODELS if provider == "gemini" else config.CLAUDE_MODELS
    return provider, alias, models.get(alias, alias)


# ── LLM Response Cache (LRU with TTL + maxsize) ──────────────

_cache: OrderedDict[str, dict] = OrderedDict()
CACHE_TTL = config.CACHE_TTL_SECONDS
CACHE_MAX_SIZE = 256


def _cache_key(prompt: str, provider: str, model: str) -> str:
    raw = f"{prompt}|{provider}|{model}"
    return hashlib.sha256(raw.encode()).hexdigest()


def _cache_get(key: str) -> Optional[str]:
    """Get cached text if present and not expired. Promotes to MRU on hit."""
    entry = _cache.get(key)
    if entry is None:
        return None
    if time.time() - entry["timestamp"] > CACHE_TTL:
        del _cache[key]
        return None
    _cache.move_to_end(key)
    return entry["text"]


def _cache_set(key: str, text: str) -> None:
    _cache[key] = {"text": text, "timestamp": time.time()}
    _cache.move_to_end(key)
    while len(_cache) > CACHE_MAX_SIZE:
        _cache.popitem(last=False)


def cache_clear() -> int:
    """Clear all cached entries. Returns number of entries cleared."""
    count = len(_cache)
    _cache.clear()
    return count


# ── Provider calls ────────────────────────────────────────────


def _system_instruction() -> str:
    return SYSTEM_PROMPT + "\n\n## Examples\n\n" + format_few_shot()


async def _call_gemini(prompt: str, model_id: str) -> str:
    client = _get_gemini_client()
    response = await client.aio.models.generate_content(
        model=model_id,
        contents=prompt,
        config={
            "system_instruction": _system_instruction(),
            "temperature": config.TEMPERATURE,
            "max_output_tokens": config.MAX_TOKENS,
        },
    )
    return response.text


async def _call_claude(prompt: str, model_id: str) -> str:
    client = _get_claude_client()
    response = await client.messages.create(
        model=model_id,
        max_tokens=config.MAX_TOKENS,
        temperature=config.TEMPERATURE,
        system=_system_instruction(),
        messages=[{"role": "user", "content": prompt}],
    )
    return response.content[0].text


async def generate_text(
    prompt: str,
    provider: Optional[str] = None,
    model: Optional[str] = None,
    timeout: Optional[float] = None,
) -> str:
    """Single generation round-trip. Raises GenerationError on any transport failure."""
    provider, alias, model_id = resolve_model(provider, model)
    if not is_configured(provider):
        raise GenerationError(f"{provider} API key not configured")

    key = _cache_key(prompt, provider, alias)
    cached = _cache_get(key)
    if cached is not None:
        logger.info("Cache hit for prompt: %s...", prompt[:50])
        return cached

    call = _call_gemini if provider == "gemini" else _call_claude
    timeout = timeout or config.REQUEST_TIMEOUT_SECONDS

    if config.LOG_AI_REQUESTS:
        logger.info("Sending AI request (%s/%s): %s...", provider, alias, prompt[:100])

    t0 = time.perf_counter()
    try:
        text = await asyncio.wait_for(call(prompt, model_id), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise GenerationError(f"Request timed out after {timeout:.0f}s") from e
    except Exception as e:
        raise GenerationError(f"{provider} request failed: {e}") from e

    if not text:
        raise GenerationError("No valid response content found")

    if config.LOG_AI_REQUESTS:
        logger.info(
            "AI response received (%d characters, %.2fs)", len(text), time.perf_counter() - t0
        )
    _cache_set(key, text)
    return text


def make_generator(provider: Optional[str] = None, model: Optional[str] = None) -> TextGenerator:
    """Bind provider and model into a ``prompt -> text`` coroutine function."""

    async def _generate(prompt: str) -> str:
        return await generate_text(prompt, provider, model)

    return _generate


# ── Retry ─────────────────────────────────────────────────────

RETRYABLE_ERRORS = (GenerationError, asyncio.TimeoutError, OSError)


async def interruptible_sleep(seconds: float, stop_event: Optional[asyncio.Event] = None) -> bool:
    """Sleep up to ``seconds``. Returns True when ``stop_event`` fired first."""
    if stop_event is None:
        await asyncio.sleep(seconds)
        return False
    if stop_event.is_set():
        return True
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=seconds)
        return True
    except asyncio.TimeoutError:
        return False


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    attempts: int = config.MAX_RETRIES,
    base_delay: float = config.RETRY_BASE_DELAY_SECONDS,
    stop_event: Optional[asyncio.Event] = None,
    on_retry: Optional[Callable[[int, float, Exception], None]] = None,
) -> T:
    """Await ``func`` up to ``attempts`` times, sleeping ``base_delay * attempt`` between tries.

    Only transport errors are retried; the last one is re-raised.
    """
    last_exc: Optional[Exception] = None
    for attempt in range(1, attempts + 1):
        try:
            return await func()
        except RETRYABLE_ERRORS as e:
            last_exc = e
            logger.warning("Attempt %d/%d failed: %s", attempt, attempts, e)
            if attempt == attempts:
                break
            delay = base_delay * attempt
            if on_retry:
                on_retry(attempt, delay, e)
            if await interruptible_sleep(delay, stop_event):
                logger.info("Retry interrupted after attempt %d", attempt)
                break

    if last_exc is None:
        raise GenerationError("Retry exhaustion without captured exception")
    raise last_exc
