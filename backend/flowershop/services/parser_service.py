# Overview: Natural-language transaction parser; Bedrock model call with a deterministic fallback.

from __future__ import annotations

import json
import re
import time
import unicodedata
from decimal import Decimal, InvalidOperation

import boto3
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)
from flask import current_app

from ..errors import ValidationError
from ..models import InventoryItem
from ..money import format_cents, to_cents
"""
Parser contract

- Output is a DRAFT for the create-transaction form. Nothing is persisted
  here, and a draft gets no special treatment when it is submitted.
- With no model configured, or on any model failure, the deterministic
  fallback runs. A model failure never fails the request.
- Fallback confidence is capped at 0.75.
"""

AGENT_STOPWORDS = frozenset({
    "total", "tot", "efectivo", "transferencia", "transfer", "cash", "bank",
    "banco", "compra", "gasto", "expense", "sale", "venta", "con", "sin",
    "para", "por", "de", "del", "la", "el", "los", "las", "un", "una", "y",
})
EXPENSE_KEYWORDS = ("gasto", "compra", "expense", "purchase", "proveedor")
TRANSFER_KEYWORDS = ("transferencia", "transfer", "nequi", "daviplata", "banco", "bank")

MAX_DRAFT_ITEMS = 8
FALLBACK_CONFIDENCE_CAP = 0.75
TRANSIENT_ERROR_CODES = {
    "ThrottlingException",
    "ServiceUnavailableException",
    "InternalServerException",
    "ModelTimeoutException",
    "ModelNotReadyException",
}

_TOTAL_RE = re.compile(r"(?:total|tot)\s*\$?\s*(\d+(?:[.,]\d{1,2})?)")
_MONEY_RE = re.compile(r"\$\s*(\d+(?:[.,]\d{1,2})?)")

SUGGESTIONS = {
    "es": {
        "no_items": "No pude identificar artículos del inventario. Especifica nombre y cantidad por producto.",
        "no_total": 'No pude extraer el total. Indica "total $X" en la descripción.',
        "inferred_total": "El total fue inferido desde precios unitarios del inventario. Verifícalo antes de guardar.",
        "no_agent": "No identifiqué claramente el vendedor. Agrega el nombre del agente al final del texto.",
        "low_confidence": "Baja confianza de parsing. Revisa los datos sugeridos antes de confirmar.",
        "fallback_note": "Resultado generado por parser de respaldo. Verifica antes de guardar.",
        "empty_prompt": "El prompt no puede estar vacío",
        "no_inventory": "No hay artículos activos en inventario. Agrega inventario antes de usar el análisis con IA.",
    },
    "en": {
        "no_items": "No inventory items recognized. Name each product and its quantity.",
        "no_total": 'Could not find the total. Add "total $X" to the description.',
        "inferred_total": "The total was inferred from inventory unit prices. Check it before saving.",
        "no_agent": "Could not tell who the sales agent is. Put the agent name at the end.",
        "low_confidence": "Low parsing confidence. Review the suggested values before confirming.",
        "fallback_note": "Generated by the fallback parser. Review before saving.",
        "empty_prompt": "The prompt cannot be empty",
        "no_inventory": "There are no active inventory items. Add inventory before using the assistant.",
    },
}


class ModelResponseError(Exception):
    """The model answered, but not with a usable transaction JSON."""


def normalize_prompt(prompt: str) -> str:
    return re.sub(r"\s+", " ", prompt or "").strip()


def normalize_text(text: str) -> str:
    """Accent-stripped, lower-cased text keeping only letters, digits, $ . , and spaces."""
    decomposed = unicodedata.normalize("NFD", text)
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    cleaned = re.sub(r"[^a-z0-9$.,\s]", " ", stripped.lower())
    return re.sub(r"\s+", " ", cleaned).strip()


def _has_word(text: str, word: str) -> bool:
    return re.search(rf"\b{re.escape(word)}\b", text) is not None


def _prompt_has_token(text: str, token: str) -> bool:
    """Singular/plural tolerant word match (rosa/rosas, girasol/girasoles)."""
    if _has_word(text, token):
        return True
    if token.endswith("s") and _has_word(text, token[:-1]):
        return True
    return _has_word(text, f"{token}s") or _has_word(text, f"{token}es")


def _parse_amount(raw: str) -> Decimal:
    try:
        return Decimal(raw.replace(",", "."))
    except InvalidOperation:
        return Decimal("0")


def _amount_cents(value) -> int:
    """Cents for a parsed amount; out-of-range amounts count as missing."""
    try:
        return to_cents(value, "total_amount")
    except ValidationError:
        return 0


def _draft_item(item: InventoryItem, quantity: int) -> dict:
    return {
        "inventory_item_id": item.id,
        "item_name": item.name,
        "quality": item.quality,
        "quantity": quantity,
        "unit_price": format_cents(item.unit_price_cents),
        "available_quantity": item.quantity,
    }


def active_inventory(session) -> list[InventoryItem]:
    return (
        session.query(InventoryItem)
        .filter(InventoryItem.is_active.is_(True))
        .order_by(InventoryItem.name.asc(), InventoryItem.quality.asc())
        .all()
    )


class TransactionParser:
    """
    prompt + active inventory -> transaction draft.

    The Bedrock runtime client is injectable; when none is given and a
    model id is configured, one is created on first use.
    """

    def __init__(
        self,
        *,
        model_id: str | None = None,
        region_name: str = "us-east-1",
        bedrock_runtime_client=None,
        retry_attempts: int = 1,
        max_prompt_chars: int = 600,
        max_response_tokens: int = 320,
        max_context_items: int = 40,
        retry_backoff: float = 0.25,
    ):
        self.model_id = model_id
        self.region_name = region_name
        self._bedrock_runtime = bedrock_runtime_client
        self.retry_attempts = retry_attempts
        self.max_prompt_chars = max_prompt_chars
        self.max_response_tokens = max_response_tokens
        self.max_context_items = max_context_items
        self.retry_backoff = retry_backoff

    @classmethod
    def from_config(cls, config, bedrock_runtime_client=None) -> "TransactionParser":
        return cls(
            model_id=config.get("AI_MODEL_ID"),
            region_name=config.get("AWS_REGION", "us-east-1"),
            bedrock_runtime_client=bedrock_runtime_client,
            retry_attempts=config.get("AI_RETRY_ATTEMPTS", 1),
            max_prompt_chars=config.get("AI_MAX_PROMPT_CHARS", 600),
            max_response_tokens=config.get("AI_MAX_RESPONSE_TOKENS", 320),
            max_context_items=config.get("AI_MAX_CONTEXT_ITEMS", 40),
        )

    @property
    def bedrock_runtime(self):
        if self._bedrock_runtime is None:
            self._bedrock_runtime = boto3.client("bedrock-runtime", region_name=self.region_name)
        return self._bedrock_runtime

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def parse(self, prompt: str, language: str = "es", inventory: list[InventoryItem] | None = None) -> dict:
        language = language if language in SUGGESTIONS else "es"
        texts = SUGGESTIONS[language]

        normalized = normalize_prompt(prompt if isinstance(prompt, str) else "")
        if not normalized:
            raise ValidationError(texts["empty_prompt"])
        inventory = list(inventory or [])
        if not inventory:
            raise ValidationError(texts["no_inventory"])

        limited = normalized[: self.max_prompt_chars]
        started = time.monotonic()

        if not self.model_id:
            return self._fallback(limited, language, inventory, started, "MODEL_NOT_CONFIGURED")

        context = self.select_context(limited, inventory)
        try:
            raw = self._invoke_with_retry(self._system_prompt(context, language), limited)
            parsed = self._parse_model_response(raw)
        except (ClientError, BotoCoreError, ModelResponseError) as exc:
            current_app.logger.warning("Model parse failed, using fallback parser: %s", str(exc)[:120])
            return self._fallback(limited, language, inventory, started, exc)

        return {
            "type": parsed["type"],
            "sales_agent": parsed.get("salesAgent") or None,
            "payment_method": "BANK_TRANSFER" if parsed.get("paymentMethod") == "BANK_TRANSFER" else "CASH",
            "notes": parsed.get("notes") or None,
            "items": self.match_items(parsed["items"], inventory),
            "total_amount": format_cents(_amount_cents(max(parsed["totalAmount"], 0))),
            "confidence": round(min(max(float(parsed["confidence"]), 0.0), 1.0), 2),
            "suggestions": parsed.get("suggestions") or None,
            "processing_time_ms": int((time.monotonic() - started) * 1000),
            "original_prompt": limited,
            "raw_ai_response": raw,
        }

    # ------------------------------------------------------------------
    # Model path
    # ------------------------------------------------------------------

    def select_context(self, prompt: str, inventory: list[InventoryItem]) -> list[InventoryItem]:
        """Cap the inventory sent to the model, preferring items the prompt mentions."""
        if len(inventory) <= self.max_context_items:
            return inventory

        tokens = [t for t in normalize_text(prompt).split(" ") if len(t) >= 3]
        selected: dict[int, InventoryItem] = {}
        for item in inventory:
            haystack = f"{normalize_text(item.name)} {normalize_text(item.quality)}"
            if any(token in haystack for token in tokens):
                selected[item.id] = item
            if len(selected) >= self.max_context_items:
                break
        for item in inventory:
            if len(selected) >= self.max_context_items:
                break
            selected.setdefault(item.id, item)
        return list(selected.values())

    def _system_prompt(self, context: list[InventoryItem], language: str) -> str:
        listing = "\n".join(
            f"- {item.name} ({item.quality}): ${format_cents(item.unit_price_cents)}/unit, "
            f"{item.quantity} available [ID: {item.id}]"
            for item in context
        )
        reply_language = "Spanish" if language == "es" else "English"
        return (
            "You are a flower-shop sales assistant. Convert free text to transaction JSON.\n"
            "Typical input: \"[quantity] [products] total $[amount] [payment_method?] [agent_name]\"\n\n"
            f"Available inventory:\n{listing}\n\n"
            "Rules: type is SALE unless an expense/purchase is explicit; paymentMethod is "
            "BANK_TRANSFER only for transfer keywords, otherwise CASH; salesAgent is usually "
            "the final word; take totalAmount from the text; fuzzy match items to inventory; "
            "confidence is between 0 and 1; add suggestions when uncertain.\n"
            f"Write notes and suggestions in {reply_language}.\n"
            "Respond with JSON only:\n"
            '{"type": "SALE", "salesAgent": string | null, "paymentMethod": "CASH" | "BANK_TRANSFER", '
            '"notes": string | null, "items": [{"itemName": string, "quality": string | null, '
            '"quantity": number}], "totalAmount": number, "confidence": number, '
            '"suggestions": string[] | null}'
        )

    def _invoke(self, system_prompt: str, prompt: str) -> str:
        response = self.bedrock_runtime.invoke_model(
            modelId=self.model_id,
            contentType="application/json",
            accept="application/json",
            body=json.dumps(
                {
                    "system": [{"text": system_prompt}],
                    "messages": [{"role": "user", "content": [{"text": prompt}]}],
                    "inferenceConfig": {
                        "max_new_tokens": self.max_response_tokens,
                        "temperature": 0.2,
                    },
                }
            ),
        )
        result = json.loads(response["body"].read())
        return result.get("output", {}).get("message", {}).get("content", [{}])[0].get("text", "")

    @staticmethod
    def _is_transient(exc: Exception) -> bool:
        if isinstance(exc, (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError)):
            return True
        if isinstance(exc, ClientError):
            error = exc.response.get("Error", {})
            status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode") or 0
            return error.get("Code") in TRANSIENT_ERROR_CODES or status in (408, 429) or status >= 500
        return False

    def _invoke_with_retry(self, system_prompt: str, prompt: str) -> str:
        attempt = 0
        while True:
            try:
                return self._invoke(system_prompt, prompt)
            except (ClientError, BotoCoreError) as exc:
                if attempt >= self.retry_attempts or not self._is_transient(exc):
                    raise
                attempt += 1
                delay = self.retry_backoff * attempt
                current_app.logger.warning(
                    "Transient model error on attempt %s/%s: %s. Retrying in %.2fs",
                    attempt, self.retry_attempts + 1, str(exc)[:120], delay,
                )
                time.sleep(delay)

    @staticmethod
    def _parse_model_response(raw: str) -> dict:
        text = (raw or "").strip()
        if text.startswith("```"):
            text = re.sub(r"^```(?:json)?\s*|\s*```$", "", text)
        try:
            data = json.loads(text)
        except ValueError:
            raise ModelResponseError("model response is not JSON")

        if not isinstance(data, dict):
            raise ModelResponseError("model response is not an object")
        if data.get("type") not in ("SALE", "EXPENSE"):
            raise ModelResponseError("invalid type")
        for key in ("totalAmount", "confidence"):
            if isinstance(data.get(key), bool) or not isinstance(data.get(key), (int, float)):
                raise ModelResponseError(f"invalid {key}")
        items = data.get("items")
        if not isinstance(items, list) or not all(
            isinstance(item, dict)
            and isinstance(item.get("itemName"), str)
            and isinstance(item.get("quantity"), (int, float))
            and not isinstance(item.get("quantity"), bool)
            for item in items
        ):
            raise ModelResponseError("invalid items")
        return data

    @staticmethod
    def match_items(parsed_items: list[dict], inventory: list[InventoryItem]) -> list[dict]:
        """Map model item names back to inventory rows; an exact quality match wins."""
        matched = []
        for parsed in parsed_items:
            wanted = parsed["itemName"].strip().lower()
            if not wanted:
                continue

            def _name_matches(item: InventoryItem) -> bool:
                name = item.name.lower()
                return name == wanted or wanted in name or name in wanted

            candidates = [item for item in inventory if _name_matches(item)]
            if not candidates:
                continue
            best = candidates[0]
            quality = parsed.get("quality")
            if isinstance(quality, str) and quality.strip():
                for item in candidates:
                    if item.quality.lower() == quality.strip().lower():
                        best = item
                        break
            matched.append(_draft_item(best, max(1, int(parsed["quantity"]))))
        return matched

    # ------------------------------------------------------------------
    # Fallback path
    # ------------------------------------------------------------------

    def _fallback(self, prompt: str, language: str, inventory: list[InventoryItem], started: float, source) -> dict:
        texts = SUGGESTIONS[language]
        text = normalize_text(prompt)

        items = self.extract_items(text, inventory)
        explicit_total = self.extract_total(text)
        inferred_total = sum(
            (Decimal(item["unit_price"]) * item["quantity"] for item in items),
            Decimal("0"),
        )
        explicit_total = Decimal(_amount_cents(explicit_total)) / 100
        total = explicit_total if explicit_total > 0 else inferred_total
        tx_type = "EXPENSE" if any(word in text for word in EXPENSE_KEYWORDS) else "SALE"
        payment_method = "BANK_TRANSFER" if any(word in text for word in TRANSFER_KEYWORDS) else "CASH"
        sales_agent = self.extract_sales_agent(text)

        confidence = 0.2
        if items:
            confidence += 0.25
        if total > 0:
            confidence += 0.2
        if sales_agent:
            confidence += 0.1
        if payment_method == "BANK_TRANSFER" and "transfer" in text:
            confidence += 0.1
        if all(item["quantity"] <= item["available_quantity"] for item in items):
            confidence += 0.05
        confidence = min(FALLBACK_CONFIDENCE_CAP, round(confidence, 2))

        suggestions = []
        if not items:
            suggestions.append(texts["no_items"])
        if total <= 0:
            suggestions.append(texts["no_total"])
        elif explicit_total <= 0:
            suggestions.append(texts["inferred_total"])
        if not sales_agent:
            suggestions.append(texts["no_agent"])
        if confidence < 0.5:
            suggestions.append(texts["low_confidence"])

        if isinstance(source, str):
            reason = source
        else:
            reason = str(source)[:120] or type(source).__name__

        return {
            "type": tx_type,
            "sales_agent": sales_agent,
            "payment_method": payment_method,
            "notes": texts["fallback_note"],
            "items": items,
            "total_amount": format_cents(_amount_cents(total)),
            "confidence": confidence,
            "suggestions": suggestions or None,
            "processing_time_ms": int((time.monotonic() - started) * 1000),
            "original_prompt": prompt,
            "raw_ai_response": f"FALLBACK_PARSER:{reason}",
        }

    @staticmethod
    def extract_items(text: str, inventory: list[InventoryItem]) -> list[dict]:
        items = []
        seen: set[int] = set()
        for item in inventory:
            name = normalize_text(item.name)
            tokens = [t for t in name.split(" ") if len(t) >= 3]
            if not tokens or item.id in seen:
                continue
            if not all(_prompt_has_token(text, token) for token in tokens):
                continue
            items.append(_draft_item(item, TransactionParser.extract_quantity(text, name)))
            seen.add(item.id)
        return items[:MAX_DRAFT_ITEMS]

    @staticmethod
    def extract_quantity(text: str, name: str) -> int:
        escaped = re.escape(name)
        before = re.search(rf"(\d{{1,3}})\s*(?:x\s*)?{escaped}(?:es|s)?\b", text)
        if before:
            return max(1, int(before.group(1)))
        after = re.search(rf"{escaped}(?:es|s)?\s*(?:x\s*)?(\d{{1,3}})\b", text)
        if after:
            return max(1, int(after.group(1)))
        return 1

    @staticmethod
    def extract_total(text: str) -> Decimal:
        match = _TOTAL_RE.search(text) or _MONEY_RE.search(text)
        return _parse_amount(match.group(1)) if match else Decimal("0")

    @staticmethod
    def extract_sales_agent(text: str) -> str | None:
        for token in reversed([t for t in text.split(" ") if len(t) > 1]):
            if token in AGENT_STOPWORDS or token.isdigit() or "$" in token:
                continue
            return token
        return None
