"""
Transaction Classifier - reasoning-service call for one transaction

Sends vendor, amount, description and date to Claude and parses the
structured JSON answer into a ClassificationResult. Anything that is not
parseable, schema-valid JSON is a per-transaction ClassificationError.

Transient failures (timeouts, connection errors, 429, 5xx) are retried with
exponential backoff up to `max_attempts`; the final failure is raised to the
engine, which turns it into an `error` event.

Example:
- Input: vendor="STARBUCKS #4521", amount=6.75, date=2024-02-03
- AI Output: {"category": "Meals", "scheduleCLine": "Line 24b", "isMeal": true, ...}
- Result: category="Meals", schedule_c_line="24b", is_meal=True
"""
import asyncio
import json
from typing import Any, Dict, Optional

import anthropic
import structlog
from pydantic import ValidationError

from packages.common.config import Settings, get_settings
from packages.common.errors import ClassificationError
from packages.common.schemas.transaction import Transaction, TransactionKind
from packages.domain.categorization.category_table import CategoryTable, category_table
from packages.domain.categorization.schemas import CategorizationSource, ClassificationResult

logger = structlog.get_logger()

SYSTEM_PROMPT = """You are a tax expert analyzing business transactions for Schedule C (IRS Form 1040).

Your job is to:
1. Categorize the transaction into the correct IRS category
2. Assign the Schedule C line number
3. Provide a confidence score and concise reasoning
4. Suggest 3-4 quick-action labels the user can click
5. Identify special cases (meals, travel)

Important tax rules:
- Meals are 50% deductible and must be business-related
- Travel away from the tax home is fully deductible; local commuting is NOT
- Personal expenses are NEVER deductible (use category "Personal")
- Amazon purchases usually need itemization, so lower your confidence
- Equipment over $2,500 must be depreciated

Return ONLY valid JSON, no markdown."""

# Fewer usable suggestions than this makes the reply unusable
MIN_QUICK_LABELS = 3

_TRANSIENT_ERRORS = (
    anthropic.APIConnectionError,  # includes APITimeoutError
    anthropic.RateLimitError,
    anthropic.InternalServerError,
)


class TransactionClassifier:
    """
    Reasoning-service client for transaction classification.

    The Anthropic client is injectable so tests can pass a fake with the
    same `messages.create` coroutine.
    """

    def __init__(
        self,
        client: Optional[Any] = None,
        settings: Optional[Settings] = None,
        table: Optional[CategoryTable] = None,
    ):
        self.settings = settings or get_settings()
        self.table = table or category_table
        self.model = self.settings.classifier_model
        self.max_tokens = self.settings.classifier_max_tokens
        self.max_attempts = self.settings.classifier_max_attempts
        self.backoff_seconds = self.settings.classifier_backoff_seconds

        if client is not None:
            self.client = client
        elif self.settings.anthropic_api_key:
            self.client = anthropic.AsyncAnthropic(api_key=self.settings.anthropic_api_key)
        else:
            logger.warning("anthropic_api_key_missing",
                           message="ANTHROPIC_API_KEY not set, classification will fail")
            self.client = None

    async def classify(self, txn: Transaction) -> ClassificationResult:
        """
        Classify one transaction.

        Raises:
            ClassificationError: service unavailable, exhausted retries or
                unparseable output. The reason is safe to show to users.
        """
        if self.client is None:
            raise ClassificationError(
                "Classification service is not configured",
                transaction_id=str(txn.id),
            )

        prompt = self._build_user_prompt(txn)
        attempt = 0
        while True:
            attempt += 1
            try:
                response = await self.client.messages.create(
                    model=self.model,
                    max_tokens=self.max_tokens,
                    temperature=0.0,
                    system=SYSTEM_PROMPT,
                    messages=[{"role": "user", "content": prompt}],
                )
                break
            except _TRANSIENT_ERRORS as e:
                if attempt >= self.max_attempts:
                    logger.error("classification_call_failed",
                                 transaction_id=str(txn.id),
                                 attempts=attempt,
                                 error=type(e).__name__)
                    raise ClassificationError(
                        "Classification service unavailable, try again later",
                        transient=True,
                        transaction_id=str(txn.id),
                    ) from e
                delay = self.backoff_seconds * (2 ** (attempt - 1))
                logger.warning("classification_call_retry",
                               transaction_id=str(txn.id),
                               attempt=attempt,
                               delay_seconds=delay,
                               error=type(e).__name__)
                await asyncio.sleep(delay)
            except anthropic.APIError as e:
                logger.error("classification_call_rejected",
                             transaction_id=str(txn.id),
                             error=type(e).__name__)
                raise ClassificationError(
                    "Classification service rejected the request",
                    transaction_id=str(txn.id),
                ) from e

        usage = getattr(response, "usage", None)
        logger.info("classification_call_complete",
                    transaction_id=str(txn.id),
                    attempts=attempt,
                    input_tokens=getattr(usage, "input_tokens", None),
                    output_tokens=getattr(usage, "output_tokens", None))

        text = self._response_text(response)
        if text is None:
            raise ClassificationError(
                "Classification service returned no text",
                transaction_id=str(txn.id),
            )
        return self.parse_response(text, transaction_id=str(txn.id))

    def _build_user_prompt(self, txn: Transaction) -> str:
        """
        Build the per-transaction prompt.

        Blank vendor/description are sent as "N/A" so the model falls back
        to amount and date.
        """
        direction = "money received" if txn.kind == TransactionKind.INCOME else "money spent"
        return f"""
Analyze this transaction ({direction}):

Vendor: {txn.vendor.strip() or "N/A"}
Amount: ${abs(txn.amount)}
Description: {(txn.description or "").strip() or "N/A"}
Date: {txn.date.isoformat()}

Return JSON:
{{
  "category": "Meals" | "Travel" | "Supplies" | "Insurance" | "Office expense" | "Other expenses" | "Income" | "Personal" | etc,
  "scheduleCLine": "Line 24b" | "Line 22" | etc,
  "confidence": 0.85,
  "reasoning": "Brief 1-sentence explanation",
  "isMeal": true | false,
  "isTravel": true | false,
  "suggestions": [
    "Business Meal",
    "Client Dinner",
    "Team Lunch",
    "Personal"
  ]
}}
"""

    @staticmethod
    def _response_text(response: Any) -> Optional[str]:
        for block in getattr(response, "content", None) or []:
            if getattr(block, "type", None) == "text":
                return block.text
        return None

    def parse_response(self, response_text: str, transaction_id: Optional[str] = None) -> ClassificationResult:
        """
        Parse JSON response from Claude API.

        Canonicalizes category and line through the CategoryTable; the
        table's meal/travel flags are OR-ed with the model's.
        """
        # Claude should return clean JSON, but extract it if wrapped in markdown
        if "```json" in response_text:
            response_text = response_text.split("```json")[1].split("```")[0].strip()
        elif "```" in response_text:
            response_text = response_text.split("```")[1].split("```")[0].strip()

        try:
            data: Dict[str, Any] = json.loads(response_text)
            if not isinstance(data, dict):
                raise ValueError("expected a JSON object")
            category, line, info = self.table.resolve(
                data.get("category"),
                data.get("scheduleCLine") or data.get("schedule_c_line"),
            )
            suggestions = data.get("suggestions") or data.get("quickLabels") or []
            if not isinstance(suggestions, list):
                raise ValueError("suggestions must be a list")
            result = ClassificationResult(
                category=category,
                schedule_c_line=line,
                confidence=float(data["confidence"]),
                reasoning=data.get("reasoning"),
                quick_labels=[str(s) for s in suggestions],
                is_meal=bool(data.get("isMeal")) or bool(info and info.is_meal),
                is_travel=bool(data.get("isTravel")) or bool(info and info.is_travel),
                source=CategorizationSource.AI,
            )
            if len(result.quick_labels) < MIN_QUICK_LABELS:
                raise ValueError(f"expected at least {MIN_QUICK_LABELS} suggestions, got {len(result.quick_labels)}")
            return result
        except (ValueError, KeyError, TypeError, ValidationError) as e:
            logger.error("ai_response_parse_failed",
                         transaction_id=transaction_id,
                         response=response_text[:500],
                         error=str(e))
            raise ClassificationError(
                "Classification response was malformed",
                transaction_id=transaction_id,
            ) from e
