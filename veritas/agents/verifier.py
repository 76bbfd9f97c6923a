"""Verifier Agent: checks the quotations in one manuscript chunk."""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, List, Optional

from pydantic import ValidationError

from ..errors import MalformedOutputError, OracleError
from ..models.schemas import CheckStatus, VerificationItem
from ..services.llm_service import LLMService

logger = logging.getLogger(__name__)

_FENCE_START = re.compile(r"^```(?:json|JSON)?\s*")
_FENCE_END = re.compile(r"\s*```$")
_VALUE_START = re.compile(r"[\[{]")

# Keys under which a JSON object response may carry the item list.
_LIST_KEYS = ("items", "citations")


@dataclass(frozen=True)
class ItemDecodeResult:
    """Outcome of decoding one raw oracle item."""
    ok: bool
    item: Optional[VerificationItem] = None
    error: Optional[str] = None


def strip_decoration(raw: str) -> str:
    """Remove surrounding whitespace and markdown code fences."""
    clean = raw.strip()
    if clean.startswith("```"):
        clean = _FENCE_END.sub("", _FENCE_START.sub("", clean))
    return clean.strip()


def parse_oracle_response(raw: Optional[str]) -> List[Any]:
    """Parse the oracle's raw answer into a list of raw items.

    Accepts a bare JSON array, or an object holding the array under
    ``items`` (JSON mode forces an object at the top level).

    Raises:
        MalformedOutputError: If no item list can be recovered
    """
    if raw is None or not raw.strip():
        return []

    clean = strip_decoration(raw)

    try:
        payload = json.loads(clean)
    except json.JSONDecodeError:
        payload = _parse_embedded(clean)

    if isinstance(payload, list):
        return payload

    if isinstance(payload, dict):
        for key in _LIST_KEYS:
            if isinstance(payload.get(key), list):
                return payload[key]

    raise MalformedOutputError(
        f"Expected a JSON array of items, got {type(payload).__name__}"
    )


def _parse_embedded(text: str) -> Any:
    """Last attempt: find an item list surrounded by prose.

    Every ``[`` or ``{`` is tried as the start of a JSON value, so page
    markers such as ``[P2]`` in a preamble do not hide the payload.
    """
    decoder = json.JSONDecoder()

    for match in _VALUE_START.finditer(text):
        try:
            payload, _ = decoder.raw_decode(text, match.start())
        except json.JSONDecodeError:
            continue
        if _holds_items(payload):
            return payload

    raise MalformedOutputError("Oracle response contains no JSON item list")


def _holds_items(payload: Any) -> bool:
    if isinstance(payload, list):
        return all(isinstance(entry, dict) for entry in payload)
    if isinstance(payload, dict):
        return any(isinstance(payload.get(key), list) for key in _LIST_KEYS)
    return False


def decode_item(raw: Any) -> ItemDecodeResult:
    """Validate one raw item against the VerificationItem schema."""
    if not isinstance(raw, dict):
        return ItemDecodeResult(ok=False, error=f"item is a {type(raw).__name__}, not an object")

    try:
        return ItemDecodeResult(ok=True, item=VerificationItem.model_validate(raw))
    except ValidationError as e:
        fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err.get("loc"))
        return ItemDecodeResult(ok=False, error=f"invalid fields: {fields or 'unknown'}")


class VerifierAgent:
    """Agent responsible for checking quotations against their sources.

    Builds the oracle prompt for a chunk, calls the LLM service and keeps
    only the items that satisfy the output schema. Transport and
    authentication failures surface as OracleError; a response that
    cannot be parsed is logged and yields no items.
    """

    SYSTEM_PROMPT = f"""You are a strict fact-checking system working for a senior book editor with twenty years of experience.

TASK:
1. Scan the manuscript excerpt and extract every direct quotation (text in quotation marks) and every indirect quotation or attribution (e.g. "as X said", "according to Y").
2. Check each one for authenticity, correct attribution and correct source.

LOCATION:
The excerpt may contain page markers such as [P1], [P2]. The "location" field must name the page and the paragraph on that page, e.g. "Page 5, Para 2". If the excerpt starts with "(Context: Continued from [P...])", use that page as the starting page.

STATUS (use exactly one of these values):
- {CheckStatus.ACCURATE.value}: the wording matches the original closely.
- {CheckStatus.PARAPHRASED.value}: the meaning matches but the wording differs (e.g. a different translation).
- {CheckStatus.MISATTRIBUTED.value}: the quotation exists but the author or work is wrong.
- {CheckStatus.UNVERIFIABLE.value}: no reliable source found; possibly fabricated.

OUTPUT:
Respond ONLY with a JSON object of the form {{"items": [...]}} where each item has the string fields
"location", "quote_text", "claimed_source", "status" and "notes".
"notes" should compare against the original wording or suggest a correction.
If the excerpt contains no quotations, respond with {{"items": []}}."""

    def __init__(self, llm_service: Optional[LLMService] = None):
        """Initialize the Verifier Agent.

        Args:
            llm_service: LLM service instance for oracle calls
        """
        self.llm_service = llm_service or LLMService()

    def build_prompt(self, text: str) -> str:
        """Build the user prompt for one annotated chunk."""
        return f"""Review the following manuscript excerpt:

EXCERPT:
\"\"\"
{text}
\"\"\"

Return every quotation or attribution it contains with your verdict."""

    def verify(self, text: str) -> List[VerificationItem]:
        """Verify the quotations in one annotated chunk.

        Args:
            text: Chunk text, possibly prefixed with a continuation hint

        Returns:
            Valid verification items in oracle order (possibly empty)

        Raises:
            OracleError: If the oracle call itself fails
        """
        if not text or not text.strip():
            return []

        try:
            raw = self.llm_service.generate(
                system_prompt=self.SYSTEM_PROMPT,
                user_prompt=self.build_prompt(text),
                json_mode=True
            )
        except Exception as e:
            raise OracleError(f"Verification oracle call failed: {e}") from e

        try:
            raw_items = parse_oracle_response(raw)
        except MalformedOutputError as e:
            logger.warning(f"Discarding malformed oracle response ({e}): {raw[:200]!r}")
            return []

        items = []
        for index, raw_item in enumerate(raw_items):
            result = decode_item(raw_item)
            if result.ok:
                items.append(result.item)
            else:
                logger.warning(f"Dropping oracle item {index}: {result.error}")

        logger.info(f"Oracle returned {len(items)} valid items ({len(raw_items) - len(items)} dropped)")
        return items
