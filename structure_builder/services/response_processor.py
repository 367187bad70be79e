"""Response processor - rebuilds a StructureModel from raw, possibly truncated model output.

Strategies run in order and each reports a tagged ``ParseOutcome``; the first
outcome carrying a valid structure wins. When none does, a procedural
archetype is returned, so ``process_response`` never fails outward.
"""

import io
import json
import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Iterator, Optional

import ijson
from pydantic import ValidationError

from structure_builder import config
from structure_builder.models import Size, StructureModel, Voxel
from structure_builder.services.archetypes import generate_fallback_structure

logger = logging.getLogger(__name__)

# Pure-python backend yields every event before the one that fails.
_ijson = ijson.get_backend("python")

VOXEL_KEYS = ("blocks", "placements")
_VOXEL_ITEM_PREFIXES = tuple(f"{key}.item" for key in VOXEL_KEYS)
_CLOSER_FOR = {"{": "}", "[": "]"}
_OPENER_FOR = {"}": "{", "]": "["}

_FENCE = re.compile(r"```[A-Za-z]*[ \t]*")
_VOXEL_ARRAY = re.compile(r'"(?:blocks|placements)"\s*:\s*\[')
_PARTIAL_LITERAL = re.compile(r"(?<=[:,\[])\s*(?:t|tr|tru|f|fa|fal|fals|n|nu|nul|-)$")
_PARTIAL_FRACTION = re.compile(r"(?<=\d)[.eE][+-]?$")
_DANGLING_KEY = re.compile(r'(?P<lead>[,{])\s*"(?:[^"\\]|\\.)*"\s*:?\s*$')


@dataclass
class ParseOutcome:
    """Result of one parsing strategy."""

    strategy: str
    model: Optional[StructureModel] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return is_valid_structure(self.model)


def is_valid_structure(model: Optional[StructureModel], min_voxels: Optional[int] = None) -> bool:
    """A structure needs more than ``MIN_VOXEL_THRESHOLD`` voxels to count as real."""
    threshold = config.MIN_VOXEL_THRESHOLD if min_voxels is None else min_voxels
    return (
        model is not None
        and model.placements is not None
        and len(model.placements) > threshold
    )


# ── Text scanning ───────────────────────────────────────────────


@dataclass
class _ScanState:
    stack: list[str]
    in_string: bool
    string_start: int


def _scan(text: str) -> _ScanState:
    """Track open containers and string state, ignoring brackets inside strings."""
    stack: list[str] = []
    in_string = False
    escape = False
    string_start = -1

    for i, ch in enumerate(text):
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
            string_start = i
        elif ch in "{[":
            stack.append(ch)
        elif ch in "}]":
            if stack and stack[-1] == _OPENER_FOR[ch]:
                stack.pop()

    return _ScanState(stack=stack, in_string=in_string, string_start=string_start if in_string else -1)


def clean_response(text: Optional[str]) -> str:
    """Strip markdown fences and any prose before the first ``{`` and after the last ``}``."""
    if not text:
        return "{}"
    cleaned = _FENCE.sub("", text.strip())

    first = cleaned.find("{")
    if first == -1:
        return cleaned.strip()
    cleaned = cleaned[first:]

    last = cleaned.rfind("}")
    if last != -1:
        cleaned = cleaned[: last + 1]
    return cleaned.strip()


def _balanced_spans(text: str) -> Iterator[str]:
    """Yield each complete top-level ``{...}`` span, quote and escape aware."""
    depth = 0
    start = -1
    in_string = False
    escape = False

    for i, ch in enumerate(text):
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"' and depth > 0:
            in_string = True
        elif ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                yield text[start : i + 1]


def extract_json_object(text: Optional[str]) -> Optional[str]:
    """Return the first balanced top-level JSON object embedded in ``text``."""
    if not text:
        return None
    for span in _balanced_spans(text):
        try:
            if isinstance(json.loads(span), dict):
                return span
        except json.JSONDecodeError:
            continue
    return None


def looks_truncated(text: str) -> bool:
    """Heuristic used for logging: trailing comma, open string or unmatched bracket/brace."""
    stripped = text.rstrip()
    if not stripped:
        return False
    if stripped.endswith(","):
        return True
    state = _scan(stripped)
    return state.in_string or bool(state.stack)


# ── Repair ──────────────────────────────────────────────────────


def _truncate_voxel_array(text: str) -> str:
    """Cut an unterminated voxel array after its last complete object and close it."""
    match = _VOXEL_ARRAY.search(text)
    if not match:
        return text

    depth = 0
    in_string = False
    escape = False
    last_complete = None

    for i in range(match.end(), len(text)):
        ch = text[i]
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            depth += 1
        elif ch in "}]":
            if depth == 0:
                return text
            depth -= 1
            if depth == 0 and ch == "}":
                last_complete = i

    if last_complete is None:
        return text[: match.end()] + "]"
    return text[: last_complete + 1] + "]"


def _drop_dangling_tail(text: str) -> str:
    state = _scan(text)
    if not state.stack and not state.in_string:
        return text

    text = _truncate_voxel_array(text)
    state = _scan(text)
    if state.in_string:
        text = text[: state.string_start]

    text = text.rstrip()
    text = _PARTIAL_LITERAL.sub("", text)
    text = _PARTIAL_FRACTION.sub("", text)
    text = _DANGLING_KEY.sub(lambda m: "{" if m.group("lead") == "{" else "", text)
    return text.rstrip().rstrip(",")


def _strip_trailing_commas(text: str) -> str:
    out: list[str] = []
    in_string = False
    escape = False

    for ch in text:
        if in_string:
            out.append(ch)
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "}]":
            j = len(out) - 1
            while j >= 0 and out[j].isspace():
                j -= 1
            if j >= 0 and out[j] == ",":
                del out[j]
        out.append(ch)

    return "".join(out)


def _balance_quotes(text: str) -> str:
    if _scan(text).in_string:
        return text + '"'
    return text


def _close_open_containers(text: str) -> str:
    state = _scan(text)
    return text + "".join(_CLOSER_FOR[opener] for opener in reversed(state.stack))


def repair_json(text: str) -> str:
    """Best-effort repair of truncated or sloppy JSON.

    Prefers losing trailing data over failing: the dangling tail is dropped,
    trailing commas removed, quotes rebalanced, then missing closers appended
    in nesting order.
    """
    repaired = _drop_dangling_tail(text)
    repaired = _strip_trailing_commas(repaired)
    repaired = _balance_quotes(repaired)
    repaired = _close_open_containers(repaired)
    return repaired


# ── Strategies ──────────────────────────────────────────────────


def _model_from_json(text: str) -> StructureModel:
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    return StructureModel.model_validate(data).with_derived_size()


def _parse_direct(raw: str, cleaned: str) -> ParseOutcome:
    return ParseOutcome("direct", _model_from_json(cleaned))


def _parse_extracted(raw: str, cleaned: str) -> ParseOutcome:
    content = extract_json_object(raw)
    if content is None:
        return ParseOutcome("extraction", error="no balanced JSON object found")
    return ParseOutcome("extraction", _model_from_json(content))


def _plain(value):
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    return value


def _voxel_from_fields(fields: dict) -> Optional[Voxel]:
    if not fields.get("material"):
        return None
    try:
        return Voxel.model_validate(fields)
    except ValidationError:
        return None


def _parse_streaming(raw: str, cleaned: str) -> ParseOutcome:
    """Event-by-event parse that keeps every voxel completed before the stream breaks."""
    text_fields: dict[str, str] = {}
    size_fields: dict[str, int] = {}
    voxels: list[Voxel] = []
    current: Optional[dict] = None
    skipped = 0
    stream_error = None

    try:
        for prefix, event, value in _ijson.parse(io.BytesIO(cleaned.encode("utf-8"))):
            if prefix in ("name", "description") and event == "string":
                text_fields[prefix] = value
            elif prefix.startswith("size.") and event == "number":
                size_fields[prefix[len("size."):]] = _plain(value)
            elif prefix in _VOXEL_ITEM_PREFIXES:
                if event == "start_map":
                    current = {}
                elif event == "end_map" and current is not None:
                    voxel = _voxel_from_fields(current)
                    if voxel is None:
                        skipped += 1
                    else:
                        voxels.append(voxel)
                    current = None
            elif current is not None and event in ("number", "string", "null", "boolean"):
                parent, _, key = prefix.rpartition(".")
                if parent in _VOXEL_ITEM_PREFIXES:
                    current[key] = _plain(value)
    except (ijson.JSONError, ValueError) as e:
        stream_error = f"stream ended after {len(voxels)} voxels: {e}"

    if skipped:
        logger.info("Streaming parse skipped %d malformed voxels", skipped)
    if not voxels:
        return ParseOutcome("streaming", error=stream_error or "no voxels in response")

    try:
        size = Size.model_validate(size_fields) if size_fields else None
    except ValidationError:
        size = None

    model = StructureModel(
        name=text_fields.get("name") or "AI Generated Structure",
        description=text_fields.get("description") or "AI Generated Structure",
        size=size,
        placements=voxels,
    )
    return ParseOutcome("streaming", model.with_derived_size(), error=stream_error)


def _parse_repaired(raw: str, cleaned: str) -> ParseOutcome:
    repaired = repair_json(cleaned)
    if repaired == cleaned:
        return ParseOutcome("repair", error="nothing to repair")
    logger.info("Attempting to parse repaired JSON (%d -> %d characters)", len(cleaned), len(repaired))
    return ParseOutcome("repair", _model_from_json(repaired))


Strategy = Callable[[str, str], ParseOutcome]

STRATEGIES: tuple[tuple[str, Strategy], ...] = (
    ("direct", _parse_direct),
    ("extraction", _parse_extracted),
    ("streaming", _parse_streaming),
    ("repair", _parse_repaired),
)


def _attempt(name: str, strategy: Strategy, raw: str, cleaned: str) -> ParseOutcome:
    try:
        return strategy(raw, cleaned)
    except Exception as e:
        return ParseOutcome(name, error=f"{type(e).__name__}: {e}")


def run_strategies(raw: str, cleaned: Optional[str] = None) -> Iterator[ParseOutcome]:
    """Lazily evaluate each strategy in order."""
    if cleaned is None:
        cleaned = clean_response(raw)
    for name, strategy in STRATEGIES:
        yield _attempt(name, strategy, raw, cleaned)


def process_response(raw_text: Optional[str], original_description: Optional[str]) -> StructureModel:
    """Turn raw generator text into a valid StructureModel; never raises."""
    raw = raw_text if isinstance(raw_text, str) else ""
    logger.info("Processing AI response (%d characters)", len(raw))

    cleaned = clean_response(raw)
    if looks_truncated(cleaned):
        logger.warning("Response looks truncated; later strategies may drop trailing data")

    for outcome in run_strategies(raw, cleaned):
        if outcome.ok:
            logger.info(
                "Parsed %d voxels using %s strategy", outcome.model.voxel_count, outcome.strategy
            )
            if outcome.error:
                logger.info("%s strategy note: %s", outcome.strategy, outcome.error)
            return outcome.model
        reason = outcome.error or f"only {outcome.model.voxel_count if outcome.model else 0} voxels"
        logger.warning("%s strategy failed: %s", outcome.strategy, reason)

    logger.warning("All parsing strategies failed, generating fallback structure")
    return generate_fallback_structure(original_description)
